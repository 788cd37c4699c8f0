from datetime import datetime, timedelta, timezone

import pytest

# Helpers ----------------------------------------------------------------------


def _next_times(trigger, tzinfo, count=5, start=None):
    """
    Ask a trigger for the next `count` fire times, seeding the computation
    as if the previous fire happened at `start`.
    """
    if start is None:
        start = datetime.now(tz=tzinfo)

    prev = start
    now = start
    out = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        out.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return out


# Tests ------------------------------------------------------------------------


def test_build_trigger_accepts_cron_weekday_fields():
    from service.scheduler import _build_trigger

    trig = _build_trigger({"cron": {"minute": 0, "hour": 8, "day_of_week": "mon-fri"}}, "UTC")

    # 2099-01-09 is a Friday
    start = datetime(2099, 1, 9, 9, 0, 0, tzinfo=timezone.utc)
    times = _next_times(trig, timezone.utc, count=2, start=start)
    assert times[0] == datetime(2099, 1, 12, 8, 0, 0, tzinfo=timezone.utc)  # Mon, weekend skipped
    assert times[1] == datetime(2099, 1, 13, 8, 0, 0, tzinfo=timezone.utc)


def test_build_trigger_accepts_crontab_string():
    from service.scheduler import _build_trigger

    trig = _build_trigger({"cron": "30 7 * * mon-fri"}, "UTC")
    start = datetime(2099, 1, 5, 0, 0, 0, tzinfo=timezone.utc)  # Monday
    assert _next_times(trig, timezone.utc, count=1, start=start) == [datetime(2099, 1, 5, 7, 30, tzinfo=timezone.utc)]


def test_build_trigger_cron_respects_block_timezone():
    from service.scheduler import _build_trigger

    trig = _build_trigger({"cron": {"hour": 8, "timezone": "Europe/Riga"}}, "UTC")
    # 2099-07-01: Riga is UTC+3 in summer
    start = datetime(2099, 7, 1, 0, 0, 0, tzinfo=timezone.utc)
    (first,) = _next_times(trig, timezone.utc, count=1, start=start)
    assert first.astimezone(timezone.utc) == datetime(2099, 7, 1, 5, 0, tzinfo=timezone.utc)


def test_build_trigger_daily_time_plain_string():
    from service.scheduler import _build_trigger

    trig = _build_trigger({"daily_time": "08:30"}, "UTC")
    start = datetime(2099, 1, 4, 8, 29, 0, tzinfo=timezone.utc)
    times = _next_times(trig, timezone.utc, count=2, start=start)
    assert times == [
        datetime(2099, 1, 4, 8, 30, tzinfo=timezone.utc),
        datetime(2099, 1, 5, 8, 30, tzinfo=timezone.utc),
    ]


def test_build_trigger_daily_time_multiple_times_no_cross_product():
    from apscheduler.triggers.combining import OrTrigger

    from service.scheduler import _build_trigger

    trig = _build_trigger({"daily_time": {"time": ["05:00", "06:30", "08:00"]}}, "UTC")
    assert isinstance(trig, OrTrigger)

    start = datetime(2097, 1, 7, 4, 59, 0, tzinfo=timezone.utc)
    hm = [(t.hour, t.minute) for t in _next_times(trig, timezone.utc, count=3, start=start)]
    assert hm == [(5, 0), (6, 30), (8, 0)]


def test_build_trigger_daily_time_supports_seconds_and_dedup():
    from service.scheduler import _build_trigger

    trig = _build_trigger(
        {"daily_time": {"time": ["12:00:10", "12:00:10", "12:00:20"], "day_of_week": "sun"}},
        "UTC",
    )
    # 2099-01-04 is a Sunday
    start = datetime(2099, 1, 4, 11, 59, 59, tzinfo=timezone.utc)
    times = _next_times(trig, timezone.utc, count=2, start=start)
    assert times[0] == datetime(2099, 1, 4, 12, 0, 10, tzinfo=timezone.utc)
    assert times[1] == datetime(2099, 1, 4, 12, 0, 20, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "payload",
    [
        {"daily_time": {}},
        {"daily_time": {"time": "99:99"}},
        {"daily_time": {"time": "08:00", "every": "day"}},
        {"cron": "*/15 * *"},
        {"cron": {"hour": 3, "weekday": "mon"}},
        {"interval": {"minutes": 5}},
        {"cron": "0 8 * * *", "daily_time": "08:00"},
        {},
    ],
)
def test_build_trigger_invalid_inputs_raise(payload):
    from service.scheduler import _build_trigger

    with pytest.raises(ValueError):
        _build_trigger(payload, "UTC")


def test_start_registers_single_worker_non_overlapping_jobs(tmp_path, monkeypatch):
    import json

    from service import scheduler

    cfg = {
        "timezone": "Europe/Riga",
        "jobs": [
            {"id": "lands", "module": "modules.listing_watch", "cron": {"hour": 8, "day_of_week": "mon-fri"}},
            {"id": "forests", "module": "modules.listing_watch", "trigger": {"daily_time": "08:30"}},
        ],
    }
    path = tmp_path / "config.json"
    path.write_text(json.dumps(cfg), encoding="utf-8")

    controller = scheduler.start(config_path=str(path))
    try:
        assert sorted(controller.get_job_ids()) == ["forests", "lands"]
        for job in controller._scheduler.get_jobs():
            assert job.max_instances == 1
            assert job.coalesce is True
    finally:
        controller.stop()
    assert controller.join(timeout=1.0) is True
