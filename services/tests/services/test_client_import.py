"""Tests for the client import pass: isolation, tallies and collaborators."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from factories import extension, json_response, make_report, mock_http_client
from t3monitor.db.models import Client, ClientExtension, CoreVersion, Extension
from t3monitor.services.client_fetcher import ClientFetcher
from t3monitor.services.client_import import ClientImport, ImportFailure, ImportSuccess
from t3monitor.services.errors import ReconciliationError
from t3monitor.services.import_registry import CLIENT_IMPORT, get_import_time


class RecordingIntegrity:
    def __init__(self) -> None:
        self.calls = 0

    async def invoke_after_client_import(self, db: AsyncSession) -> None:
        self.calls += 1


async def _importer(session_factory, responses: dict, **kwargs) -> ClientImport:
    fetcher = ClientFetcher(mock_http_client(responses))
    kwargs.setdefault("data_integrity", RecordingIntegrity())
    return await ClientImport.create(session_factory, fetcher=fetcher, **kwargs)


async def _client(session_factory, client_id: int) -> Client:
    async with session_factory() as db:
        return await db.get(Client, client_id)


async def _count(session_factory, model) -> int:
    async with session_factory() as db:
        return await db.scalar(select(func.count()).select_from(model))


class TestSuccessfulImport:
    async def test_updates_client_row(self, session_factory, add_client):
        client_id = await add_client("shop.example.com")
        payload = make_report(
            core_version="10.4.21",
            extensions={"news": extension("8.5.2", title="News")},
            extra={"warning": {"Deprecation log": "enabled"}},
        )
        importer = await _importer(session_factory, {"shop.example.com": json_response(payload)})

        counts = await importer.run()

        assert counts == {"success": 1, "error": 0}
        client = await _client(session_factory, client_id)
        assert client.error_message == ""
        assert client.last_successful_import is not None
        assert client.php_version == "7.2.24"
        assert client.mysql_version == "mysqlnd 5.0.12"
        assert client.extension_count == 1
        assert client.backend_user_count == 1
        assert client.extra_warning == '{"Deprecation log":"enabled"}'
        assert client.extra_info == ""

        async with session_factory() as db:
            core = await db.get(CoreVersion, client.core_version_id)
        assert core.version == "10.4.21"

    async def test_stores_full_mysqlnd_client_string(self, session_factory, add_client):
        mysqlnd = "mysqlnd 5.0.12-dev - 20150407 - $Id: 7cc7cc96e675f6d72e5cf0f267f48e167c2abb23 $"
        php = "7.0.33-0ubuntu0.16.04.16+esm1"
        client_id = await add_client("legacy.example.com")
        payload = make_report()
        payload["core"].update(mysqlClientVersion=mysqlnd, phpVersion=php)
        importer = await _importer(session_factory, {"legacy.example.com": json_response(payload)})

        assert await importer.run() == {"success": 1, "error": 0}

        client = await _client(session_factory, client_id)
        assert client.mysql_version == mysqlnd
        assert client.php_version == php
        # SQLite ignores VARCHAR lengths, PostgreSQL does not
        assert Client.__table__.c.mysql_version.type.length >= len(mysqlnd)
        assert Client.__table__.c.php_version.type.length >= len(php)

    async def test_clears_previous_error(self, session_factory, add_client):
        client_id = await add_client("shop.example.com", error_message="Connection refused")
        importer = await _importer(session_factory, {"shop.example.com": json_response(make_report())})

        await importer.run()

        assert (await _client(session_factory, client_id)).error_message == ""

    async def test_two_clients_share_new_core_version(self, session_factory, add_client):
        first = await add_client("a.example.com")
        second = await add_client("b.example.com")
        payload = json_response(make_report(core_version="12.4.7"))
        importer = await _importer(
            session_factory, {"a.example.com": payload, "b.example.com": payload}
        )

        await importer.run()

        assert await _count(session_factory, CoreVersion) == 1
        a = await _client(session_factory, first)
        b = await _client(session_factory, second)
        assert a.core_version_id == b.core_version_id
        assert "12.4.7" in importer.registry

    async def test_shared_extension_deduplicated(self, session_factory, add_client):
        await add_client("a.example.com")
        await add_client("b.example.com")
        payload = json_response(make_report(extensions={"foo": extension("1.2.0")}))
        importer = await _importer(
            session_factory, {"a.example.com": payload, "b.example.com": payload}
        )

        await importer.run()

        assert await _count(session_factory, Extension) == 1
        assert await _count(session_factory, ClientExtension) == 2

    async def test_reimport_replaces_extension_links(self, session_factory, add_client):
        client_id = await add_client("shop.example.com")
        first = json_response(make_report(extensions={"a": extension("1.0.0"), "b": extension("1.0.0")}))
        second = json_response(make_report(extensions={"b": extension("1.0.0"), "c": extension("1.0.0")}))

        await (await _importer(session_factory, {"shop.example.com": first})).run()
        await (await _importer(session_factory, {"shop.example.com": second})).run()

        async with session_factory() as db:
            result = await db.execute(
                select(Extension.name)
                .join(ClientExtension, ClientExtension.extension_id == Extension.id)
                .where(ClientExtension.client_id == client_id)
            )
            assert set(result.scalars().all()) == {"b", "c"}


class TestFailureIsolation:
    async def test_decode_failure_in_the_middle(self, session_factory, add_client):
        first = await add_client("a.example.com")
        second = await add_client("b.example.com", php_version="5.6.40", extension_count=7)
        third = await add_client("c.example.com")
        importer = await _importer(
            session_factory,
            {
                "a.example.com": json_response(make_report()),
                "b.example.com": httpx.Response(200, content=b"{not json"),
                "c.example.com": json_response(make_report()),
            },
        )

        counts = await importer.run()

        assert counts == {"success": 2, "error": 1}
        assert importer.response_count == counts
        for client_id in (first, third):
            client = await _client(session_factory, client_id)
            assert client.last_successful_import is not None
            assert client.extension_count == 1

        failed = await _client(session_factory, second)
        assert failed.error_message.startswith("Invalid JSON")
        assert failed.php_version == "5.6.40"
        assert failed.extension_count == 7
        assert failed.last_successful_import is None

    async def test_empty_body_scenario(self, session_factory, add_client):
        ok = await add_client("ok.example.com")
        empty = await add_client("empty.example.com", title="Empty Site", mysql_version="5.7")
        updated_before = (await _client(session_factory, empty)).updated_at
        importer = await _importer(
            session_factory,
            {
                "ok.example.com": json_response(make_report()),
                "empty.example.com": httpx.Response(200, content=b""),
            },
        )

        counts = await importer.run()

        assert counts == {"success": 1, "error": 1}
        assert (await _client(session_factory, ok)).error_message == ""
        failed = await _client(session_factory, empty)
        assert failed.error_message == "Empty response from client Empty Site"
        assert failed.mysql_version == "5.7"
        assert failed.core_version_id is None
        assert failed.last_successful_import is None
        assert failed.updated_at == updated_before

    async def test_unreachable_client(self, session_factory, add_client):
        client_id = await add_client("down.example.com")
        importer = await _importer(
            session_factory, {"down.example.com": httpx.ConnectError("Connection refused")}
        )

        assert await importer.run() == {"success": 0, "error": 1}
        assert (await _client(session_factory, client_id)).error_message == "Connection refused"

    async def test_reconciliation_failure_rolls_back_client(self, session_factory, add_client):
        client_id = await add_client("shop.example.com")
        importer = await _importer(
            session_factory,
            {"shop.example.com": json_response(make_report(core_version="13.0.0"))},
        )

        with patch(
            "t3monitor.services.client_import.backend_user_reconciler.reconcile",
            new_callable=AsyncMock,
            side_effect=ReconciliationError("Could not store backend users: disk full"),
        ):
            counts = await importer.run()

        assert counts == {"success": 0, "error": 1}
        client = await _client(session_factory, client_id)
        assert client.error_message == "Could not store backend users: disk full"
        assert client.core_version_id is None
        # Core version and extension inserted before the failure are gone too
        assert await _count(session_factory, CoreVersion) == 0
        assert await _count(session_factory, ClientExtension) == 0
        assert "13.0.0" not in importer.registry

    async def test_unexpected_error_is_isolated(self, session_factory, add_client):
        await add_client("a.example.com")
        await add_client("b.example.com")
        importer = await _importer(
            session_factory,
            {
                "a.example.com": json_response(make_report()),
                "b.example.com": json_response(make_report()),
            },
        )

        with patch(
            "t3monitor.services.client_import.extension_reconciler.reconcile",
            new_callable=AsyncMock,
            side_effect=[KeyError("boom"), 1],
        ):
            counts = await importer.run()

        assert counts == {"success": 1, "error": 1}


class TestClientSelection:
    async def test_skips_hidden_and_deleted(self, session_factory, add_client):
        visible = await add_client("a.example.com")
        await add_client("b.example.com", hidden=True)
        await add_client("c.example.com", deleted=True)
        importer = await _importer(
            session_factory,
            {host: json_response(make_report()) for host in ("a.example.com", "b.example.com", "c.example.com")},
        )

        assert await importer.run() == {"success": 1, "error": 0}
        assert (await _client(session_factory, visible)).last_successful_import is not None

    async def test_single_client(self, session_factory, add_client):
        await add_client("a.example.com")
        target = await add_client("b.example.com")
        importer = await _importer(
            session_factory,
            {"a.example.com": json_response(make_report()), "b.example.com": json_response(make_report())},
        )

        assert await importer.run(target) == {"success": 1, "error": 0}
        assert (await _client(session_factory, target)).last_successful_import is not None

    async def test_single_hidden_client_is_not_imported(self, session_factory, add_client):
        target = await add_client("a.example.com", hidden=True)
        importer = await _importer(session_factory, {"a.example.com": json_response(make_report())})

        assert await importer.run(target) == {"success": 0, "error": 0}


class TestAfterImport:
    async def test_notifies_integrity_and_records_time(self, session_factory, add_client):
        await add_client("a.example.com")
        integrity = RecordingIntegrity()
        importer = await _importer(
            session_factory,
            {"a.example.com": httpx.Response(500)},
            data_integrity=integrity,
        )

        await importer.run()

        assert integrity.calls == 1
        async with session_factory() as db:
            assert await get_import_time(db, CLIENT_IMPORT) is not None

    async def test_cancelled_pass_skips_remaining_clients(self, session_factory, add_client):
        await add_client("a.example.com")
        await add_client("b.example.com")
        cancel = asyncio.Event()
        cancel.set()
        importer = await _importer(
            session_factory,
            {"a.example.com": json_response(make_report()), "b.example.com": json_response(make_report())},
            cancel_event=cancel,
        )

        assert await importer.run() == {"success": 0, "error": 0}


class TestImportSingleClient:
    async def test_returns_tagged_failure(self, session_factory, add_client):
        client_id = await add_client("a.example.com")
        importer = await _importer(session_factory, {"a.example.com": httpx.Response(503)})
        (target,) = await importer._select_clients(client_id)

        result = await importer.import_single_client(target)

        assert isinstance(result, ImportFailure)
        assert result.kind == "transport"
        assert result.message == "503 Service Unavailable"

    async def test_returns_success_payload(self, session_factory, add_client):
        client_id = await add_client("a.example.com")
        importer = await _importer(session_factory, {"a.example.com": json_response(make_report())})
        (target,) = await importer._select_clients(client_id)

        result = await importer.import_single_client(target)

        assert isinstance(result, ImportSuccess)
        assert result.extension_count == 1
        assert result.backend_user_count == 1


@pytest.mark.parametrize("concurrency", [2, 4])
async def test_concurrent_pass_uses_semaphore(session_factory, add_client, concurrency):
    hosts = [f"c{i}.example.com" for i in range(3)]
    for host in hosts:
        await add_client(host)
    importer = await _importer(
        session_factory,
        {host: httpx.Response(404) for host in hosts},
        max_concurrency=concurrency,
    )

    assert await importer.run() == {"success": 0, "error": 3}
