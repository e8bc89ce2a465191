from __future__ import annotations

import random
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import requests

from forecast_sync.core.sqlite_storage import SQLiteStorage
from forecast_sync.core.storage import COMMENT, PASTCAST_QUESTION
from forecast_sync.core.sync import process_platform
from forecast_sync.platforms.metaculus import (
    MetaculusFetcher,
    MetaculusTransformer,
    aggregate_at,
    build_comment,
    build_metaculus_platform,
    build_pastcast_question,
    clean_description,
    sample_vantage_date,
    skip_reason,
    vantage_fraction,
)
from forecast_sync.platforms.metaculus_api import ApiDetail, ApiPage

NOW = datetime(2023, 1, 1, tzinfo=timezone.utc)
UTC = timezone.utc


def _ts(*parts: int) -> float:
    return datetime(*parts, tzinfo=UTC).timestamp()


def _history() -> list[dict]:
    return [
        {"t": _ts(2020, 1, 1), "x1": {"q2": 0.2}},
        {"t": _ts(2020, 6, 1), "x1": {"q2": 0.5}},
        {"t": _ts(2021, 1, 1), "x1": {"q2": 0.8}},
    ]


def _forecast_item(qid: int = 101, **overrides) -> dict:
    item = {
        "id": qid,
        "type": "forecast",
        "group": None,
        "title": f"Will event {qid} happen?",
        "page_url": f"/questions/{qid}/event/",
        "publish_time": "2020-01-01T00:00:00Z",
        "close_time": "2021-06-01T00:00:00Z",
        "resolve_time": "2021-07-01T00:00:00Z",
        "resolution": 1.0,
        "possibilities": {"type": "binary"},
        "community_prediction": {"history": _history()},
    }
    item.update(overrides)
    return item


class FakeApi:
    questions_url = "https://api.test/questions/"

    def __init__(self, pages=None, details=None, comments=None) -> None:
        self.pages: dict[str, ApiPage] = pages or {}
        self.details: dict[int, dict] = details or {}
        self.comments: dict[int, list[dict]] = comments or {}
        self.list_calls: list[str] = []
        self.detail_calls: list[tuple[int, bool]] = []

    def fetch_list(self, url: str) -> ApiPage:
        self.list_calls.append(url)
        return self.pages[url]

    def fetch_detail(self, item_id, with_comments: bool = False) -> ApiDetail:
        self.detail_calls.append((item_id, with_comments))
        comments = self.comments.get(item_id, []) if with_comments else []
        return ApiDetail(question=self.details[item_id], comments=list(comments))


class SkipFilterTests(unittest.TestCase):
    def test_resolved_binary_question_is_accepted(self) -> None:
        self.assertIsNone(skip_reason(_forecast_item(), NOW))

    def test_rejections(self) -> None:
        cases = {
            "missing id": _forecast_item(id=None),
            "unresolved": _forecast_item(resolution=None),
            "ambiguous": _forecast_item(resolution=-1),
            "continuous": _forecast_item(possibilities={"type": "continuous"}),
            "no history": _forecast_item(community_prediction={"history": []}),
            "no prediction": _forecast_item(community_prediction=None),
            "still open": _forecast_item(
                close_time="2024-01-01T00:00:00Z", resolve_time="2024-02-01T00:00:00Z"
            ),
            "closes later, no resolve time": _forecast_item(
                close_time="2024-01-01T00:00:00Z", resolve_time=None
            ),
            "no close time": _forecast_item(close_time=None),
            "malformed possibilities": _forecast_item(possibilities=["binary"]),
            "malformed prediction": _forecast_item(community_prediction=[0.4]),
            "date range ahead": _forecast_item(
                possibilities={"type": "binary", "scale": {"format": "date", "max": "2030-01-01"}}
            ),
            "no publish time": _forecast_item(publish_time=None),
            "closed before publish": _forecast_item(close_time="2019-01-01T00:00:00Z"),
        }
        for name, item in cases.items():
            with self.subTest(name):
                self.assertIsNotNone(skip_reason(item, NOW))

    def test_open_status_follows_the_earlier_of_close_and_resolve(self) -> None:
        closed_resolving_later = _forecast_item(resolve_time="2024-01-01T00:00:00Z")
        resolved_before_close = _forecast_item(
            close_time="2024-01-01T00:00:00Z", resolve_time="2021-07-01T00:00:00Z"
        )
        self.assertIsNone(skip_reason(closed_resolving_later, NOW))
        self.assertIsNone(skip_reason(resolved_before_close, NOW))

        vantage = build_pastcast_question(closed_resolving_later, "t", "", "u").vantage_date
        self.assertLess(vantage, datetime(2021, 6, 1, tzinfo=UTC))

    def test_past_date_range_is_accepted(self) -> None:
        item = _forecast_item(possibilities={"type": "binary", "scale": {"format": "date", "max": "2022-01-01"}})
        self.assertIsNone(skip_reason(item, NOW))

    def test_zero_resolution_counts_as_no(self) -> None:
        self.assertIsNone(skip_reason(_forecast_item(resolution=0.0), NOW))
        question = build_pastcast_question(_forecast_item(resolution=0.0), "t", "", "u")
        self.assertFalse(question.binary_resolution)


class VantageTests(unittest.TestCase):
    def test_fraction_is_first_draw_of_seeded_generator(self) -> None:
        self.assertEqual(vantage_fraction("metaculus-101"), random.Random("metaculus-101").random())

    def test_vantage_is_reproducible(self) -> None:
        first = build_pastcast_question(_forecast_item(), "t", "", "u")
        second = build_pastcast_question(_forecast_item(), "t", "", "u")
        self.assertEqual(first.id, "metaculus-101")
        self.assertEqual(first.vantage_date, second.vantage_date)

    def test_vantage_stays_within_lifetime(self) -> None:
        publish = datetime(2020, 1, 1, tzinfo=UTC)
        for qid in range(1, 60):
            # Resolution before close shortens the lifetime.
            item = _forecast_item(qid, resolve_time="2021-03-01T00:00:00Z")
            vantage = build_pastcast_question(item, "t", "", "u").vantage_date
            self.assertGreaterEqual(vantage, publish)
            self.assertLess(vantage, datetime(2021, 3, 1, tzinfo=UTC))

    def test_sample_rejects_empty_interval(self) -> None:
        start = datetime(2021, 1, 1, tzinfo=UTC)
        with self.assertRaises(ValueError):
            sample_vantage_date("metaculus-1", start, start)

    def test_sample_is_strictly_before_end(self) -> None:
        start = datetime(2021, 1, 1, tzinfo=UTC)
        end = start + timedelta(microseconds=1)
        self.assertEqual(sample_vantage_date("metaculus-1", start, end), start)


class AggregateTests(unittest.TestCase):
    def test_last_point_before_vantage(self) -> None:
        vantage = datetime(2020, 9, 1, tzinfo=UTC)
        self.assertEqual(aggregate_at(_history(), vantage), 0.5)

    def test_unsorted_history(self) -> None:
        history = list(reversed(_history()))
        self.assertEqual(aggregate_at(history, datetime(2022, 1, 1, tzinfo=UTC)), 0.8)

    def test_point_at_vantage_is_excluded(self) -> None:
        vantage = datetime(2020, 6, 1, tzinfo=UTC)
        self.assertEqual(aggregate_at(_history(), vantage), 0.2)

    def test_falls_back_to_earliest(self) -> None:
        self.assertEqual(aggregate_at(_history(), datetime(2019, 1, 1, tzinfo=UTC)), 0.2)

    def test_missing_value_is_none(self) -> None:
        history = [{"t": _ts(2020, 1, 1), "x1": {}}]
        self.assertIsNone(aggregate_at(history, datetime(2021, 1, 1, tzinfo=UTC)))
        self.assertIsNone(aggregate_at([], datetime(2021, 1, 1, tzinfo=UTC)))

    def test_zero_is_a_value(self) -> None:
        history = [{"t": _ts(2020, 1, 1), "x1": {"q2": 0.0}}]
        self.assertEqual(aggregate_at(history, datetime(2021, 1, 1, tzinfo=UTC)), 0.0)

    def test_millisecond_timestamps(self) -> None:
        history = [
            {"t": _ts(2020, 1, 1) * 1000, "x1": {"q2": 0.3}},
            {"t": _ts(2020, 6, 1) * 1000, "x1": {"q2": 0.6}},
        ]
        self.assertEqual(aggregate_at(history, datetime(2020, 7, 1, tzinfo=UTC)), 0.6)


class CleanDescriptionTests(unittest.TestCase):
    def test_whitespace_moves_outside_markers(self) -> None:
        self.assertEqual(clean_description("This is ** important** stuff"), "This is  **important** stuff")
        self.assertEqual(clean_description("The **bold **word"), "The **bold** word")

    def test_clean_text_is_untouched(self) -> None:
        text = "Plain **bold** and **more bold** text\n\n* a list item"
        self.assertEqual(clean_description(text), text)

    def test_cleaning_is_idempotent(self) -> None:
        text = "A ** first ** and **second ** span"
        once = clean_description(text)
        self.assertEqual(clean_description(once), once)

    def test_asterisk_inside_a_span_keeps_spans_paired(self) -> None:
        text = "**5 * 3** and **x**"
        self.assertEqual(clean_description(text), text)
        self.assertEqual(clean_description("**2 * 2 ** is ** four**"), "**2 * 2**  is  **four**")

    def test_spans_do_not_cross_lines(self) -> None:
        text = "Ends with **\n** starts here"
        self.assertEqual(clean_description(text), text)

    def test_empty(self) -> None:
        self.assertEqual(clean_description(""), "")


class CommentTests(unittest.TestCase):
    def test_build_comment_fields(self) -> None:
        comment = build_comment(
            {
                "id": 7,
                "created_time": "2021-01-02T03:04:05Z",
                "parent": {"id": 3},
                "author": {"username": "alice"},
                "included_forecast": {"probability_yes": 0.25},
                "vote_score": 4,
                "text": "Looks likely",
            },
            "metaculus-101",
        )
        self.assertEqual(comment.id, "metaculus-7")
        self.assertEqual(comment.parent_comment_id, "metaculus-3")
        self.assertEqual(comment.author_name, "alice")
        self.assertEqual(comment.prediction_value, 0.25)
        self.assertEqual(comment.vote_total, 4)
        self.assertEqual(comment.content, "Looks likely")

    def test_comment_without_timestamp_is_dropped(self) -> None:
        self.assertIsNone(build_comment({"id": 1, "text": "x"}, "metaculus-1"))

    def test_only_comments_before_vantage_are_kept(self) -> None:
        vantage = datetime(2021, 6, 1, tzinfo=UTC)
        item = _forecast_item(close_time="2021-12-01T00:00:00Z", resolve_time="2022-01-01T00:00:00Z")
        api = FakeApi(
            details={101: dict(item, description="")},
            comments={
                101: [
                    {"id": 1, "created_time": "2021-05-31T23:59:59Z", "text": "before"},
                    {"id": 2, "created_time": "2021-06-01T00:00:00Z", "text": "at"},
                    {"id": 3, "created_time": "2021-06-01T00:00:01Z", "text": "after", "parent": 1},
                ]
            },
        )
        transformer = MetaculusTransformer(api, now=NOW, sleep_seconds=0, sleep=lambda s: None)
        with patch("forecast_sync.platforms.metaculus.sample_vantage_date", return_value=vantage):
            result = transformer.transform(item)

        self.assertEqual(result.questions[0].vantage_date, vantage)
        self.assertEqual([c.id for c in result.comments], ["metaculus-1"])
        self.assertEqual(result.comments[0].question_id, "metaculus-101")


class TransformTests(unittest.TestCase):
    def setUp(self) -> None:
        self.sleeps: list[float] = []

    def _transformer(self, api: FakeApi) -> MetaculusTransformer:
        return MetaculusTransformer(api, now=NOW, sleep_seconds=0.5, sleep=self.sleeps.append)

    def test_forecast_item(self) -> None:
        api = FakeApi(details={101: dict(_forecast_item(), description="A ** b**")})
        result = self._transformer(api).transform(_forecast_item())

        (question,) = result.questions
        self.assertEqual(question.id, "metaculus-101")
        self.assertEqual(question.url, "https://www.metaculus.com/questions/101/event/")
        self.assertEqual(question.description, "A  **b**")
        self.assertTrue(question.binary_resolution)
        self.assertEqual(api.detail_calls, [(101, True)])
        self.assertEqual(self.sleeps, [0.5])

    def test_group_expands_to_accepted_sub_questions(self) -> None:
        detail = {
            "id": 200,
            "type": "group",
            "title": "Who wins?",
            "description": "The **bold **word",
            "page_url": "/questions/200/who-wins/",
            "sub_questions": [
                _forecast_item(201, title="Alice", group=200),
                _forecast_item(202, title="Bob", group=200, resolution=0.0),
                _forecast_item(203, title="Carol", group=200, possibilities={"type": "continuous"}),
                _forecast_item(204, title="Dave", group=200, resolution=None),
            ],
        }
        api = FakeApi(details={200: detail})
        item = {"id": 200, "type": "group", "title": "Who wins?", "page_url": "/questions/200/who-wins/"}
        result = self._transformer(api).transform(item)

        self.assertEqual([q.id for q in result.questions], ["metaculus-201", "metaculus-202"])
        self.assertEqual(result.questions[0].title, "Who wins? (Alice)")
        self.assertEqual(
            result.questions[1].url,
            "https://www.metaculus.com/questions/200/who-wins/?sub-question=202",
        )
        self.assertTrue(all(q.description == "The **bold** word" for q in result.questions))
        self.assertFalse(result.questions[1].binary_resolution)
        self.assertEqual(result.comments, [])
        self.assertEqual(api.detail_calls, [(200, False)])
        self.assertEqual(self.sleeps, [0.5])

    def test_malformed_sub_questions_are_skipped(self) -> None:
        detail = {
            "id": 200,
            "type": "group",
            "title": "Who wins?",
            "page_url": "/questions/200/who-wins/",
            "sub_questions": [
                "not-a-question",
                _forecast_item(205, title="Eve", group=200, possibilities="binary"),
                _forecast_item(206, title="Frank", group=200),
            ],
        }
        api = FakeApi(details={200: detail})
        with self.assertLogs("forecast_sync.platforms.metaculus", level="WARNING"):
            result = self._transformer(api).transform({"id": 200, "type": "group", "title": "Who wins?"})
        self.assertEqual([q.id for q in result.questions], ["metaculus-206"])

    def test_group_detail_of_other_type_is_skipped(self) -> None:
        api = FakeApi(details={200: _forecast_item(200)})
        with self.assertLogs("forecast_sync.platforms.metaculus", level="WARNING"):
            result = self._transformer(api).transform({"id": 200, "type": "group"})
        self.assertEqual(result.questions, [])

    def test_group_member_is_left_to_its_group(self) -> None:
        api = FakeApi()
        result = self._transformer(api).transform(_forecast_item(group=200))
        self.assertEqual(result.questions, [])
        self.assertEqual(api.detail_calls, [])

    def test_skipped_forecast_is_not_fetched(self) -> None:
        api = FakeApi()
        result = self._transformer(api).transform(_forecast_item(resolution=None))
        self.assertEqual(result.questions, [])
        self.assertEqual(api.detail_calls, [])
        self.assertEqual(self.sleeps, [])

    def test_claim_and_unknown_types_produce_nothing(self) -> None:
        api = FakeApi()
        transformer = self._transformer(api)
        self.assertEqual(transformer.transform({"id": 5, "type": "claim"}).questions, [])
        with self.assertLogs("forecast_sync.platforms.metaculus", level="WARNING"):
            self.assertEqual(transformer.transform({"id": 6, "type": "conditional"}).questions, [])
        self.assertEqual(api.detail_calls, [])


def _two_page_api() -> FakeApi:
    second_url = "https://api.test/questions/?offset=2"
    group_detail = {
        "id": 200,
        "type": "group",
        "title": "Who wins?",
        "description": "",
        "page_url": "/questions/200/who-wins/",
        "sub_questions": [_forecast_item(201, title="Alice", group=200)],
    }
    return FakeApi(
        pages={
            FakeApi.questions_url: ApiPage(
                results=[_forecast_item(101), {"id": 102, "type": "claim"}],
                next=second_url,
            ),
            second_url: ApiPage(results=[{"id": 200, "type": "group", "title": "Who wins?"}], next=None),
        },
        details={101: dict(_forecast_item(101), description="Desc"), 200: group_detail},
        comments={101: [{"id": 11, "created_time": "2020-01-01T00:00:01Z", "text": "early"}]},
    )


class FetcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.sleeps: list[float] = []

    def _fetcher(self, api: FakeApi, max_pages: int | None = None) -> MetaculusFetcher:
        return MetaculusFetcher(
            api, sleep_seconds=1.0, max_pages=max_pages, sleep=self.sleeps.append, clock=lambda: NOW
        )

    def test_walks_every_page(self) -> None:
        api = _two_page_api()
        result = self._fetcher(api)({})

        self.assertFalse(result.partial)
        self.assertEqual([q.id for q in result.questions], ["metaculus-101", "metaculus-201"])
        self.assertEqual([c.id for c in result.comments], ["metaculus-11"])
        self.assertEqual(len(api.list_calls), 2)
        # One pause per page and one per detail request.
        self.assertEqual(len(self.sleeps), 4)

    def test_page_cap_makes_batch_partial(self) -> None:
        api = _two_page_api()
        result = self._fetcher(api, max_pages=1)({})
        self.assertTrue(result.partial)
        self.assertEqual(api.list_calls, [FakeApi.questions_url])
        self.assertEqual([q.id for q in result.questions], ["metaculus-101"])

    def test_single_item_is_partial(self) -> None:
        api = _two_page_api()
        result = self._fetcher(api)({"id": "101"})
        self.assertTrue(result.partial)
        self.assertEqual([q.id for q in result.questions], ["metaculus-101"])
        self.assertEqual(api.list_calls, [])
        self.assertEqual(api.detail_calls, [(101, False), (101, True)])

    def test_upstream_error_returns_none(self) -> None:
        class BrokenApi(FakeApi):
            def fetch_list(self, url):
                raise requests.ConnectionError("connection refused")

        with self.assertLogs("forecast_sync.platforms.metaculus", level="ERROR"):
            self.assertIsNone(self._fetcher(BrokenApi())({}))

    def test_platform_descriptor(self) -> None:
        platform = build_metaculus_platform(FakeApi(), sleep_seconds=0)
        self.assertEqual(platform.name, "metaculus")
        self.assertEqual(platform.version, "pastcast")
        self.assertEqual(platform.fetcher_args, ("id", "debug"))


class EndToEndTests(unittest.TestCase):
    def test_sync_is_reproducible(self) -> None:
        storage = SQLiteStorage(":memory:")
        storage.init()
        api = _two_page_api()
        platform = build_metaculus_platform(api, sleep_seconds=0)
        try:
            first = process_platform(platform, storage)
            stored = {q.id: q for q in storage.find_many(PASTCAST_QUESTION, platform="metaculus")}
            second = process_platform(platform, storage)
            again = {q.id: q for q in storage.find_many(PASTCAST_QUESTION, platform="metaculus")}

            self.assertEqual(first.stats[PASTCAST_QUESTION].created, 2)
            self.assertEqual(second.stats[PASTCAST_QUESTION].created, 0)
            self.assertEqual(second.stats[PASTCAST_QUESTION].updated, 2)
            for qid, question in again.items():
                self.assertEqual(question.vantage_date, stored[qid].vantage_date)
                self.assertEqual(
                    question.vantage_aggregate_binary_forecast,
                    stored[qid].vantage_aggregate_binary_forecast,
                )

            for comment in storage.find_many(COMMENT, platform="metaculus"):
                self.assertLess(comment.created_at, stored[comment.question_id].vantage_date)
        finally:
            storage.close()


if __name__ == "__main__":
    unittest.main()
