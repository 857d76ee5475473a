import requests

from conftest import FakeResponse, FakeSession, QueueSession
from deputy_api import (
    DeputyClient,
    LeaveRuleCache,
    build_search,
    condition,
    fetch_approved_timesheets,
    leave_approval_search,
    manual_approval_search,
)
from Deputy_Timesheet_Sync import PayPeriod
from errors import RemoteError, TransportError


def _page(start_id, size):
    return [{"Id": start_id + i} for i in range(size)]


def test_build_search_numbers_conditions():
    search = build_search(condition("Date", "ge", "2025-06-02"), condition("TimeApprover", "gt", 0))
    assert search == {
        "s1": {"field": "Date", "type": "ge", "data": "2025-06-02"},
        "s2": {"field": "TimeApprover", "type": "gt", "data": 0},
    }


def test_approval_searches():
    assert manual_approval_search("a", "b")["s3"] == {"field": "TimeApprover", "type": "gt", "data": 0}
    assert leave_approval_search("a", "b")["s3"] == {"field": "TimeApprover", "type": "eq", "data": -2}


def test_pagination_collects_every_page(config, notifier):
    session = QueueSession([
        FakeResponse(200, _page(0, 500)),
        FakeResponse(200, _page(500, 500)),
        FakeResponse(200, _page(1000, 137)),
    ])
    client = DeputyClient(config, session=session, notifier=notifier)

    result = client.fetch_all_pages("Timesheet", {"s1": {}}, join=["EmployeeObject"], sort={"Date": "asc"})

    assert result.ok
    assert len(result.records) == 1137
    assert result.pages == 3
    assert [call["json"]["start"] for call in session.calls] == [0, 500, 1000]
    assert all(call["json"]["max"] == 500 for call in session.calls)
    assert notifier.messages == []


def test_request_shape(config):
    session = QueueSession([FakeResponse(200, [])])
    client = DeputyClient(config, session=session)

    client.fetch_all_pages("Timesheet", {"s1": {"field": "Date"}}, join=["Leave"], sort={"Date": "asc"})

    call = session.calls[0]
    assert call["url"] == "https://acme.na.deputy.com/api/v1/resource/Timesheet/QUERY"
    assert call["headers"]["Authorization"] == "Bearer secret-token"
    assert call["json"] == {
        "search": {"s1": {"field": "Date"}},
        "join": ["Leave"],
        "sort": {"Date": "asc"},
        "max": 500,
        "start": 0,
    }


def test_zero_results(config):
    client = DeputyClient(config, session=QueueSession([FakeResponse(200, [])]))
    result = client.fetch_all_pages("Timesheet", {})
    assert result.ok
    assert result.records == []


def test_error_on_second_page_keeps_first_page_as_partial(config, notifier):
    session = QueueSession([
        FakeResponse(200, _page(0, 500)),
        FakeResponse(500, {"error": "boom"}, text="Internal Server Error"),
    ])
    client = DeputyClient(config, session=session, notifier=notifier)

    result = client.fetch_all_pages("Timesheet", {"s1": {}})

    assert not result.ok
    assert isinstance(result.error, RemoteError)
    assert result.error.status_code == 500
    assert len(result.records) == 500
    assert notifier.subjects == ["Deputy Sync API Error"]
    assert "500" in notifier.messages[0]["body"]
    assert "Internal Server Error" in notifier.messages[0]["body"]


def test_transport_error_is_reported_not_raised(config, notifier):
    session = QueueSession([requests.exceptions.ConnectionError("connection reset")])
    client = DeputyClient(config, session=session, notifier=notifier)

    result = client.fetch_all_pages("Timesheet", {})

    assert isinstance(result.error, TransportError)
    assert result.records == []
    assert notifier.subjects == ["Deputy Sync Script Error"]


def test_non_list_body_ends_paging_without_error(config, notifier):
    session = QueueSession([FakeResponse(200, _page(0, 500)), FakeResponse(200, {"message": "odd"})])
    client = DeputyClient(config, session=session, notifier=notifier)

    result = client.fetch_all_pages("Timesheet", {})

    assert result.ok
    assert len(result.records) == 500
    assert notifier.messages == []


def test_no_retry_by_default(config):
    session = QueueSession([FakeResponse(503, None, text="busy"), FakeResponse(200, [])])
    client = DeputyClient(config, session=session)

    result = client.fetch_all_pages("Timesheet", {})

    assert isinstance(result.error, RemoteError)
    assert len(session.calls) == 1


def test_bounded_retry_when_configured(config):
    config.max_retries = 2
    waits = []
    session = QueueSession([
        FakeResponse(503, None, text="busy"),
        requests.exceptions.Timeout("slow"),
        FakeResponse(200, [{"Id": 1}]),
    ])
    client = DeputyClient(config, session=session, sleep=waits.append)

    result = client.fetch_all_pages("Timesheet", {})

    assert result.ok
    assert result.records == [{"Id": 1}]
    assert waits == [2, 4]


def test_leave_rule_cache_maps_and_falls_back(config):
    session = QueueSession([FakeResponse(200, [
        {"Id": 1, "Name": "Sick"},
        {"Id": 2, "Name": "Vacation"},
        {"Id": 3},
    ])])
    cache = LeaveRuleCache(DeputyClient(config, session=session))

    rules = cache.load()

    assert rules == {1: "Sick", 2: "Vacation"}
    assert session.calls[0]["json"]["search"] == {}
    assert session.calls[0]["url"].endswith("/resource/LeaveRule/QUERY")
    assert cache.lookup(2) == "Vacation"
    assert cache.lookup(99) == "Unknown Rule ID (99)"
    assert cache.lookup(None) == ""
    assert cache.lookup(0) == ""


def test_leave_rule_failure_is_not_fatal_and_not_emailed(config, notifier):
    session = QueueSession([FakeResponse(401, None, text="unauthorized")])
    cache = LeaveRuleCache(DeputyClient(config, session=session, notifier=notifier))

    assert cache.load() == {}
    assert cache.lookup(5) == "Unknown Rule ID (5)"
    assert notifier.messages == []


def _approval_router(manual, leave, fail=None):
    def handler(url, payload):
        approver = payload["search"]["s3"]["type"]
        kind = "manual" if approver == "gt" else "leave"
        if kind == fail:
            return FakeResponse(500, None, text="down")
        return FakeResponse(200, manual if kind == "manual" else leave)
    return handler


def test_merge_collapses_duplicate_ids_and_sorts(config):
    session = FakeSession(_approval_router(
        manual=[{"Id": 7}, {"Id": 1, "Note": "x"}],
        leave=[{"Id": 1, "Note": "x"}, {"Id": 3}],
    ))
    client = DeputyClient(config, session=session)

    merged = fetch_approved_timesheets(client, PayPeriod("2025-06-02", "2025-06-15"))

    assert [ts["Id"] for ts in merged] == [1, 3, 7]
    searches = [call["json"]["search"] for call in session.calls]
    assert searches[0]["s1"] == {"field": "Date", "type": "ge", "data": "2025-06-02"}
    assert searches[0]["s2"] == {"field": "Date", "type": "le", "data": "2025-06-15"}
    assert session.calls[0]["json"]["join"] == ["EmployeeObject", "Leave", "LeaveRuleObject"]
    assert session.calls[0]["json"]["sort"] == {"Date": "asc", "StartTimeLocalized": "asc"}


def test_failed_filter_contributes_nothing(config, notifier):
    session = FakeSession(_approval_router(manual=[{"Id": 2}], leave=[{"Id": 9}], fail="leave"))
    client = DeputyClient(config, session=session, notifier=notifier)

    merged = fetch_approved_timesheets(client, PayPeriod("2025-06-02", "2025-06-15"))

    assert [ts["Id"] for ts in merged] == [2]
    assert notifier.subjects == ["Deputy Sync API Error"]


def test_both_filters_empty_is_nothing_to_sync(config):
    client = DeputyClient(config, session=FakeSession(_approval_router(manual=[], leave=[])))
    assert fetch_approved_timesheets(client, PayPeriod("2025-06-02", "2025-06-15")) == []
