"""
hirepilot/tests.py

Covers:
  - PipelineConfig      : level / department / time-limit / test-link lookups, immutability
  - get_config()        : rebuilt when settings change
  - text_utils          : JSON fences, markup stripping, sender parsing, masking
"""

from dataclasses import FrozenInstanceError
from datetime import datetime, timezone as dt_timezone
from zoneinfo import ZoneInfo

from django.test import SimpleTestCase, override_settings

from hirepilot.config import PipelineConfig, get_config
from hirepilot.text_utils import (
    extract_display_name,
    extract_email_address,
    format_local,
    mask_email,
    strip_json_fence,
    strip_markup,
)


class PipelineConfigTests(SimpleTestCase):
    def setUp(self):
        self.config = PipelineConfig(
            time_limits={"DESIGN": {"intern": 2, "junior": 3, "senior": 4}, "MARKETING": {"senior": 5}},
            test_links={"DESIGN": {"junior": "https://tests/design-junior"}},
        )

    def test_role_level_detection(self):
        self.assertEqual(PipelineConfig.role_level("Senior Interior Designer"), "senior")
        self.assertEqual(PipelineConfig.role_level("junior architect"), "junior")
        self.assertEqual(PipelineConfig.role_level("Design Intern"), "intern")
        self.assertEqual(PipelineConfig.role_level(""), "intern")

    def test_department_for_uses_keywords_and_defaults_to_design(self):
        self.assertEqual(PipelineConfig.department_for("Social Media Executive"), "MARKETING")
        self.assertEqual(PipelineConfig.department_for("Sales Associate"), "SALES")
        self.assertEqual(PipelineConfig.department_for("Something Else"), "DESIGN")

    def test_time_limit_by_department_and_level(self):
        self.assertEqual(self.config.time_limit_for("Junior Designer", "DESIGN"), 3.0)
        self.assertEqual(self.config.time_limit_for("Senior Marketing Lead", "MARKETING"), 5.0)

    def test_time_limit_falls_back_to_default(self):
        # MARKETING has no intern entry; unknown department falls back to DESIGN.
        self.assertEqual(self.config.time_limit_for("Marketing Intern", "MARKETING"), 2.0)
        self.assertEqual(self.config.time_limit_for("Senior Sales", "UNKNOWN"), 4.0)
        self.assertEqual(PipelineConfig().time_limit_for("Anything"), 2.0)

    def test_test_link_lookup(self):
        self.assertEqual(self.config.test_link_for("Junior Designer"), "https://tests/design-junior")
        self.assertEqual(self.config.test_link_for("Senior Designer"), "")

    def test_config_is_immutable(self):
        with self.assertRaises(FrozenInstanceError):
            self.config.admin_email = "x@example.com"

    def test_settings_mappings_are_read_only(self):
        config = get_config()
        with self.assertRaises(TypeError):
            config.time_limits["DESIGN"] = {}

    def test_tz_property(self):
        self.assertEqual(PipelineConfig(timezone="Asia/Kolkata").tz, ZoneInfo("Asia/Kolkata"))

    def test_get_config_follows_override_settings(self):
        with override_settings(ADMIN_EMAIL="boss@example.com", FOLLOWUP_DAYS=[1, 3]):
            config = get_config()
            self.assertEqual(config.admin_email, "boss@example.com")
            self.assertEqual(config.followup_days, (1, 3))
        self.assertNotEqual(get_config().admin_email, "boss@example.com")


class TextUtilsTests(SimpleTestCase):
    def test_strip_json_fence(self):
        self.assertEqual(strip_json_fence('```json\n{"a": 1}\n```'), '{"a": 1}')
        self.assertEqual(strip_json_fence('```{"a": 1}```'), '{"a": 1}')
        self.assertEqual(strip_json_fence('  {"a": 1} '), '{"a": 1}')

    def test_strip_markup(self):
        html = "<html><style>p{}</style><script>x()</script><p>Hello&nbsp;<b>world</b></p></html>"
        self.assertEqual(strip_markup(html), "Hello world")

    def test_sender_parsing(self):
        sender = '"Ana Pop" <Ana.Pop@Example.com>'
        self.assertEqual(extract_email_address(sender), "ana.pop@example.com")
        self.assertEqual(extract_display_name(sender), "Ana Pop")
        self.assertEqual(extract_display_name("ana@example.com"), "")

    def test_mask_email(self):
        self.assertEqual(mask_email("anapop@example.com"), "ana***@example.com")
        self.assertEqual(mask_email(""), "***")

    def test_format_local(self):
        moment = datetime(2025, 3, 10, 9, 30, tzinfo=dt_timezone.utc)
        self.assertEqual(format_local(moment, ZoneInfo("Asia/Kolkata")), "Monday, 10 March 2025, 03:00 PM")
        self.assertEqual(format_local(None), "")
