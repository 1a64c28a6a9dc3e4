"""Tests for cohort filters."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from biodash.engine.cohort_filters import CohortFilters
from biodash.engine.models import Condition, Observation, UserRecord


ALICE = UserRecord(
    username="alice",
    personal_attributes={"pregnant": "true"},
    device_attributes={
        "age": {"$numberInt": "29"}, "gender": "F", "arm": "left",
        "deviceID": "D1", "userID": {"$numberInt": "101"},
    },
)
KID = UserRecord(
    username="kid",
    personal_attributes={"age": "12 years"},
    device_attributes={"gender": "M", "arm": "right", "deviceID": "D9"},
)
NO_AGE = UserRecord(username="ghost", device_attributes={"gender": "F"})


class TestFromMapping:

    def test_camel_case_body(self) -> None:
        filters = CohortFilters.from_mapping({
            "userIDs": ["101"],
            "deviceIDs": "D1",
            "genders": ["F"],
            "arms": ["left", "right"],
            "ageMin": "20",
            "ageMax": 40,
            "startDate": "2024-03-01",
            "endDate": "2024-03-02T12:00:00Z",
            "conditions": {"pregnancy": True, "smoking": "false"},
        })
        assert filters.user_ids == ["101"]
        assert filters.device_ids == ["D1"]
        assert filters.arms == ["left", "right"]
        assert (filters.age_min, filters.age_max) == (20, 40)
        assert filters.start_date == date(2024, 3, 1)
        assert filters.end_date == date(2024, 3, 2)
        assert filters.conditions == {Condition.PREGNANCY: True, Condition.SMOKING: False}

    def test_top_level_condition_keys_and_snake_case(self) -> None:
        filters = CohortFilters.from_mapping({"type2_diabetes": "yes", "age_min": 18})
        assert filters.conditions == {Condition.TYPE2_DIABETES: True}
        assert filters.age_min == 18

    def test_empty(self) -> None:
        assert CohortFilters.from_mapping(None).is_empty()
        assert CohortFilters.from_mapping({"genders": [], "ageMin": ""}).is_empty()
        assert not CohortFilters(age_max=30).is_empty()

    def test_bad_values_are_ignored(self) -> None:
        filters = CohortFilters.from_mapping({"ageMin": "old", "startDate": "someday"})
        assert filters.is_empty()


class TestMatchesUser:

    def test_device_predicates(self) -> None:
        assert CohortFilters(user_ids=["101"]).matches_user(ALICE)
        assert not CohortFilters(device_ids=["D2"]).matches_user(ALICE)
        assert CohortFilters(genders=["F"], arms=["left"]).matches_user(ALICE)
        assert not CohortFilters(arms=["right"]).matches_user(ALICE)

    def test_age_range_inclusive(self) -> None:
        assert CohortFilters(age_min=29, age_max=29).matches_user(ALICE)
        assert not CohortFilters(age_min=30).matches_user(ALICE)
        assert CohortFilters(age_max=12).matches_user(KID)

    def test_unknown_age_fails_age_filter(self) -> None:
        assert not CohortFilters(age_min=0).matches_user(NO_AGE)
        assert CohortFilters(genders=["F"]).matches_user(NO_AGE)

    def test_condition_states(self) -> None:
        assert CohortFilters(conditions={Condition.PREGNANCY: True}).matches_user(ALICE)
        assert not CohortFilters(conditions={Condition.PREGNANCY: False}).matches_user(ALICE)
        assert CohortFilters(conditions={Condition.PEDIATRIC: True}).matches_user(KID)
        assert CohortFilters(conditions={Condition.SMOKING: False}).matches_user(KID)

    def test_filter_users(self) -> None:
        users = [ALICE, KID, NO_AGE]
        assert CohortFilters(genders=["F"]).filter_users(users) == [ALICE, NO_AGE]
        assert CohortFilters().filter_users(users) == users


class TestFilterObservations:

    def test_inclusive_date_window(self) -> None:
        obs = [
            Observation(datetime(2024, 2, 29, 23, 59, tzinfo=timezone.utc), 1.0),
            Observation(datetime(2024, 3, 1, 0, 0, tzinfo=timezone.utc), 2.0),
            Observation(datetime(2024, 3, 2, 23, 59, 59, tzinfo=timezone.utc), 3.0),
            Observation(datetime(2024, 3, 3, 0, 0, tzinfo=timezone.utc), 4.0),
        ]
        window = CohortFilters(start_date=date(2024, 3, 1), end_date=date(2024, 3, 2))
        assert [o.value for o in window.filter_observations(obs, timezone.utc)] == [2.0, 3.0]

    def test_open_ended_windows(self) -> None:
        obs = [
            Observation(datetime(2024, 3, 1, tzinfo=timezone.utc), 1.0),
            Observation(datetime(2024, 3, 5, tzinfo=timezone.utc), 2.0),
        ]
        assert [o.value for o in CohortFilters(start_date=date(2024, 3, 2)).filter_observations(obs, timezone.utc)] == [2.0]
        assert [o.value for o in CohortFilters(end_date=date(2024, 3, 2)).filter_observations(obs, timezone.utc)] == [1.0]
        assert CohortFilters().filter_observations(obs) == obs

    def test_days_follow_display_timezone(self) -> None:
        new_york = ZoneInfo("America/New_York")
        evening_before = Observation(datetime(2024, 1, 2, 1, 0, tzinfo=timezone.utc), 1.0)
        after_midnight = Observation(datetime(2024, 1, 2, 6, 0, tzinfo=timezone.utc), 2.0)
        obs = [evening_before, after_midnight]

        jan_2 = CohortFilters(start_date=date(2024, 1, 2))
        assert jan_2.filter_observations(obs, new_york) == [after_midnight]
        assert jan_2.filter_observations(obs, timezone.utc) == obs

        jan_1 = CohortFilters(end_date=date(2024, 1, 1))
        assert jan_1.filter_observations(obs, new_york) == [evening_before]
        assert jan_1.filter_observations(obs, timezone.utc) == []
