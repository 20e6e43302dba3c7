import asyncio
import uuid
from types import SimpleNamespace

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from db.session import Base
from workers.scheduler import dispatch_active_integrations

COST_CENTER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")


def _seed_integrations(db_url: str, rows: list[tuple[str, str, str]]) -> None:
    from db.models import Integration

    engine = create_async_engine(db_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _seed() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        async with session_factory() as db:
            db.add_all(
                [
                    Integration(
                        integration_id=uuid.UUID(integration_id),
                        cost_center_id=COST_CENTER_ID,
                        platform=platform,
                        name=f"{platform} {status.lower()}",
                        credentials={},
                        status=status,
                    )
                    for integration_id, platform, status in rows
                ]
            )
            await db.commit()
        await engine.dispose()

    asyncio.run(_seed())


def test_dispatch_fans_out_only_connected_inbox_integrations(tmp_path, monkeypatch):
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}"
    _seed_integrations(
        db_url,
        [
            ("00000000-0000-0000-0000-000000000101", "foody", "CONNECTED"),
            ("00000000-0000-0000-0000-000000000102", "foody", "DEGRADED"),
            ("00000000-0000-0000-0000-000000000103", "ifood", "CONNECTED"),
            ("00000000-0000-0000-0000-000000000104", "agilizone", "CONNECTED"),
            ("00000000-0000-0000-0000-000000000105", "foody", "STOPPED"),
        ],
    )

    monkeypatch.setattr("core.config.get_settings", lambda: SimpleNamespace(database_url=db_url))

    dispatched_calls: list[tuple[str, dict]] = []

    def _capture_send_task(task_name: str, kwargs: dict):
        dispatched_calls.append((task_name, kwargs))
        return None

    monkeypatch.setattr("workers.scheduler.celery_app.send_task", _capture_send_task)

    result = dispatch_active_integrations.run(
        task_name="workers.ingest.backfill_daily_orders",
        task_kwargs={"day": "2025-12-01"},
    )
    assert result["status"] == "success"
    assert result["integration_count"] == 1
    assert result["dispatched_count"] == 1
    assert result["platforms"] == ["foody"]

    assert dispatched_calls == [
        (
            "workers.ingest.backfill_daily_orders",
            {"day": "2025-12-01", "integration_id": "00000000-0000-0000-0000-000000000101"},
        )
    ]


def test_dispatch_platform_filter_can_exclude_everything(tmp_path, monkeypatch):
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}"
    _seed_integrations(db_url, [("00000000-0000-0000-0000-000000000201", "foody", "CONNECTED")])

    monkeypatch.setattr("core.config.get_settings", lambda: SimpleNamespace(database_url=db_url))
    dispatched_calls: list[str] = []
    monkeypatch.setattr(
        "workers.scheduler.celery_app.send_task",
        lambda task_name, kwargs: dispatched_calls.append(task_name),
    )

    result = dispatch_active_integrations.run(task_name="workers.ingest.drain_pending_inbox", platforms=["ifood"])

    assert result["status"] == "success"
    assert result["platforms"] == []
    assert result["dispatched_count"] == 0
    assert dispatched_calls == []


def test_dispatch_rejects_tasks_outside_workers_namespace():
    result = dispatch_active_integrations.run(task_name="os.system")

    assert result == {"status": "failed", "reason": "invalid_task_name", "task_name": "os.system"}


def test_beat_entries_fan_out_to_registered_ingest_tasks():
    import workers.ingest  # noqa: F401 - register tasks
    from workers.celery_app import celery_app

    for entry in celery_app.conf.beat_schedule.values():
        assert entry["task"] == "workers.scheduler.dispatch_active_integrations"
        assert entry["kwargs"]["task_name"] in celery_app.tasks
