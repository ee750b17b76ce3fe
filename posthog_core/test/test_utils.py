import unittest
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

import mock
from dateutil.tz import tzutc
from parameterized import parameterized

from posthog_core import utils
from posthog_core.config import Config

TEST_API_KEY = "kOOlRy2QlMY9jHZQv0bKz0FZyazBUoY8Arj0lFVNjs4"
FAKE_TEST_API_KEY = "random_key"


def make_config(**overrides) -> Config:
    """A config that keeps tests quiet: no lifecycle events, no preloading, no timer ticks."""
    settings = {
        "api_key": FAKE_TEST_API_KEY,
        "host": "https://test.posthog.local",
        "capture_application_lifecycle_events": False,
        "preload_feature_flags": False,
        "send_feature_flag_event": False,
        "flush_interval_seconds": 60,
    }
    settings.update(overrides)
    return Config(**settings)


class Color(Enum):
    RED = "red"


@dataclass
class InnerDataClass:
    inner_foo: str
    inner_bar: int
    inner_uuid: UUID
    inner_date: datetime
    inner_optional: Optional[str] = None


@dataclass
class SampleDataClass:
    foo: str
    bar: int
    nested: InnerDataClass


class TestUtils(unittest.TestCase):
    @parameterized.expand(
        [
            ("naive datetime should be naive", True),
            ("timezone-aware datetime should not be naive", False),
        ]
    )
    def test_is_naive(self, _name: str, expected_naive: bool):
        if expected_naive:
            dt = datetime.now()  # naive datetime
        else:
            dt = datetime.now(tz=tzutc())  # timezone-aware datetime

        assert utils.is_naive(dt) is expected_naive

    def test_timezone_utils(self):
        now = datetime.now()
        utcnow = datetime.now(tz=tzutc())

        fixed = utils.guess_timezone(now)
        assert utils.is_naive(fixed) is False

        shouldnt_be_edited = utils.guess_timezone(utcnow)
        assert utcnow == shouldnt_be_edited

    def test_old_naive_datetime_is_assumed_utc(self):
        old = datetime.now() - timedelta(days=1)
        fixed = utils.guess_timezone(old)
        self.assertEqual(fixed.tzinfo, tzutc())

    def test_iso_timestamp(self):
        timestamp = utils.iso_timestamp(datetime(2024, 1, 2, 3, 4, 5, tzinfo=tzutc()))
        self.assertEqual(timestamp, "2024-01-02T03:04:05+00:00")

        now = datetime.fromisoformat(utils.iso_timestamp())
        self.assertFalse(utils.is_naive(now))

    def test_clean(self):
        simple = {
            "decimal": Decimal("0.142857"),
            "unicode": "woo",
            "date": datetime(2024, 1, 2, 3, 4, 5),
            "long": 200000000,
            "integer": 1,
            "float": 2.0,
            "bool": True,
            "str": "woo",
            "none": None,
        }

        complicated = {
            "exception": Exception("This should show up"),
            "timedelta": timedelta(microseconds=20),
            "list": [1, 2, 3],
        }

        combined = dict(simple.items())
        combined.update(complicated.items())

        pre_clean_keys = combined.keys()

        cleaned = utils.clean(combined)
        self.assertEqual(cleaned.keys(), pre_clean_keys - {"exception", "timedelta"})
        self.assertEqual(cleaned["decimal"], 0.142857)
        self.assertEqual(cleaned["date"], "2024-01-02T03:04:05")
        self.assertEqual(cleaned["list"], [1, 2, 3])

    def test_clean_with_dates(self):
        dict_with_dates = {
            "birthdate": date(1980, 1, 1),
            "registration": datetime(2024, 1, 2, 3, 4, 5, tzinfo=tzutc()),
        }
        self.assertEqual(
            utils.clean(dict_with_dates),
            {"birthdate": "1980-01-01", "registration": "2024-01-02T03:04:05+00:00"},
        )

    def test_bytes(self):
        item = bytes(10)
        self.assertEqual(utils.clean(item), "\x00" * 10)

    def test_clean_fn(self):
        cleaned = utils.clean({"fn": lambda x: x, "number": 4})
        self.assertEqual(cleaned, {"number": 4})

    def test_clean_collections_and_enums(self):
        cleaned = utils.clean(
            {
                "tuple": (1, "two"),
                "set": {"only"},
                "uuid": UUID("12345678123456781234567812345678"),
                "enum": Color.RED,
                1: "int key",
            }
        )
        self.assertEqual(
            cleaned,
            {
                "tuple": [1, "two"],
                "set": ["only"],
                "uuid": "12345678-1234-5678-1234-567812345678",
                "enum": "red",
                "1": "int key",
            },
        )

    def test_clean_dataclass(self):
        dataclass_to_clean = SampleDataClass(
            foo="bar",
            bar=1,
            nested=InnerDataClass(
                inner_foo="bar",
                inner_bar=1,
                inner_uuid=UUID("12345678123456781234567812345678"),
                inner_date=datetime(2025, 1, 1),
            ),
        )

        assert utils.clean(dataclass_to_clean) == {
            "foo": "bar",
            "bar": 1,
            "nested": {
                "inner_foo": "bar",
                "inner_bar": 1,
                "inner_uuid": "12345678-1234-5678-1234-567812345678",
                "inner_date": "2025-01-01T00:00:00",
                "inner_optional": None,
            },
        }

    def test_clean_model_dump(self):
        class ModelLike:
            def model_dump(self):
                return {"name": "model", "count": Decimal("2")}

        self.assertEqual(utils.clean(ModelLike()), {"name": "model", "count": 2.0})

    def test_remove_slash(self):
        self.assertEqual(
            "http://posthog.io", utils.remove_trailing_slash("http://posthog.io/")
        )
        self.assertEqual(
            "http://posthog.io", utils.remove_trailing_slash("http://posthog.io")
        )

    @parameterized.expand([(10, 100), (5, 20), (20, 200)])
    def test_size_limited_dict(self, size: int, iterations: int) -> None:
        values = utils.SizeLimitedDict(size, lambda _: -1)

        for i in range(iterations):
            values[i] = i

            assert values[i] == i
            assert len(values) == i % size + 1

            if i % size == 0:
                # old numbers should've been removed
                self.assertIsNone(values.get(i - 1))
                self.assertIsNone(values.get(i - 3))

    def test_size_limited_dict_default_factory(self):
        values = utils.SizeLimitedDict(2, set)
        values["a"].add(1)
        values["b"].add(2)
        values["c"].add(3)
        self.assertEqual(dict(values), {"c": {3}})

    @parameterized.expand(
        [
            ("linux", "Linux"),
            ("darwin", "Mac OS X"),
            ("win32", "Windows"),
            ("sunos5", "sunos5"),
        ]
    )
    def test_get_os_info(self, platform_name: str, expected_os: str):
        with mock.patch.object(utils.sys, "platform", platform_name), mock.patch(
            "posthog_core.utils.distro.version", return_value="22.04"
        ):
            os_name, _ = utils.get_os_info()
        self.assertEqual(os_name, expected_os)

    def test_system_context(self):
        context = utils.system_context()
        self.assertEqual(
            set(context.keys()),
            {"$python_runtime", "$python_version", "$os", "$os_version"},
        )
