"""Integration tests for the HTTP gateway against an in-process fake backend."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from mail_dispatch.core.config import ApiSettings
from mail_dispatch.core.errors import ApiError, PayloadError, TransportError
from mail_dispatch.core.models import (
    DraftRequest,
    ItemKind,
    MessageStatus,
    RenderContext,
)
from mail_dispatch.transport import ApiClient, DispatchGateway

CSRF = "csrf-secret"


def _fake_backend() -> FastAPI:
    app = FastAPI()
    app.state.requests = []

    @app.middleware("http")
    async def record(request: Request, call_next):
        body = await request.body()
        app.state.requests.append(
            {
                "method": request.method,
                "path": request.url.path,
                "query": dict(request.query_params),
                "csrf": request.headers.get("x-csrftoken"),
                "session": request.cookies.get("sessionid"),
                "json": json.loads(body) if body else None,
            }
        )
        return await call_next(request)

    @app.get("/api/aktiviteter/all/")
    async def activities() -> list[dict[str, Any]]:
        return [
            {
                "id": 11,
                "aktivitet": "Call bank",
                "informations_kilde": {"id": 1, "navn": "Bank"},
                "mail_titel": "",
                "skabelon_mail_titel": "Statement",
                "skal_mailes": True,
            }
        ]

    @app.get("/api/sager/sagsdokumenter/")
    async def documents() -> dict[str, Any]:
        return {
            "count": 1,
            "results": [
                {
                    "id": 21,
                    "titel": None,
                    "filnavn": "budget.pdf",
                    "informations_kilde": None,
                    "gruppe_nr": "2.0",
                    "dokument_nr": 5,
                }
            ],
        }

    @app.patch("/api/aktiviteter/{item_id}/")
    async def patch_activity(item_id: int) -> Response:
        return Response(status_code=204)

    @app.patch("/api/sager/sagsdokumenter/{item_id}/")
    async def patch_document(item_id: int) -> JSONResponse:
        return JSONResponse({"detail": "Document is locked"}, status_code=403)

    @app.post("/api/sager/{case_id}/reset_mail_basket/")
    async def reset(case_id: int) -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/kerne/informationskilder/")
    async def sources() -> list[dict[str, Any]]:
        return [{"id": 1, "navn": "Bank"}, {"id": 2, "navn": "Mægler"}]

    @app.get("/api/sager/with_mail_basket/")
    async def cases_with_basket() -> list[dict[str, Any]]:
        return [
            {"id": 7, "sags_nr": "2024-17", "alias": "Villa"},
            {"id": 9, "sags_nr": 2024020, "alias": None},
        ]

    @app.get("/api/sager/{case_id}/")
    async def case(case_id: int) -> dict[str, Any]:
        return {
            "id": case_id,
            "sags_nr": 2024017,
            "alias": "Villa",
            "adresse_vej": "Main St",
            "adresse_husnr": "1",
            "adresse_post_nr": "8000",
            "adresse_by": "Aarhus",
            "standard_outlook_account_details": {
                "id": 4,
                "email_address": "cases@firm.example",
            },
        }

    @app.get("/api/skabeloner/mail/")
    async def templates() -> list[dict[str, Any]]:
        return [
            {"id": 1, "navn": "Bank request", "informations_kilde": {"id": 1, "navn": "Bank"}},
            {"id": 2, "navn": "Generic", "informations_kilde": None},
        ]

    @app.post("/api/emails/render-template/")
    async def render(request: Request) -> dict[str, Any]:
        payload = await request.json()
        context = payload["extra_context"]
        return {
            "subject": f"Case {payload['sag_id']}",
            "body": f"<p>{context['name']}</p><pre>{context['opgaveliste']}</pre>",
            "informations_kilde_id": 1,
            "inferred_email": "loans@bank.example",
        }

    @app.get("/api/emails/outgoing/")
    async def outgoing() -> list[dict[str, Any]]:
        return [
            {
                "id": 5,
                "sag": 7,
                "informations_kilde": 1,
                "recipient": "loans@bank.example",
                "subject": "Docs",
                "body_html": "<p>Hi</p>",
                "outlook_account": 4,
                "status": "Sent",
                "created_at": "2026-03-02T10:00:00",
            },
            {
                "id": 4,
                "sag": 7,
                "status": "Error",
                "error_message": "timeout",
            },
        ]

    @app.post("/api/emails/outgoing/")
    async def create(request: Request) -> JSONResponse:
        payload = await request.json()
        return JSONResponse({"id": 6, **payload}, status_code=201)

    @app.post("/api/emails/outgoing/{message_id}/retry/")
    async def retry(message_id: int) -> Response:
        if message_id == 404:
            return PlainTextResponse("<html>gateway down</html>", status_code=502)
        return Response(status_code=204)

    @app.post("/api/emails/outgoing/{message_id}/mark_completed/")
    async def complete(message_id: int) -> JSONResponse:
        return JSONResponse({"error": "Message is not in Outlook"}, status_code=400)

    @app.delete("/api/emails/outgoing/{message_id}/")
    async def delete(message_id: int) -> Response:
        return Response(status_code=204)

    @app.get("/api/emails/accounts/")
    async def accounts() -> list[dict[str, Any]]:
        return [
            {
                "id": 4,
                "account_name": "Cases",
                "email_address": "cases@firm.example",
                "is_active": True,
                "sidst_opdateret": "2026-03-02T09:00:00Z",
            }
        ]

    @app.post("/api/emails/accounts/")
    async def toggle_account() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/api/emails/bridges/")
    async def bridges() -> list[dict[str, Any]]:
        return [
            {
                "id": 1,
                "machine_name": "PC-1",
                "os_user": "anna",
                "last_seen": "2026-03-02T11:58:00+00:00",
            }
        ]

    return app


@pytest.fixture
def backend_app() -> FastAPI:
    return _fake_backend()


@pytest_asyncio.fixture
async def gateway(backend_app: FastAPI):
    settings = ApiSettings(
        base_url="http://testserver/api/",
        session_id="session-1",
        csrf_token=CSRF,
    )
    transport = httpx.ASGITransport(app=backend_app)
    async with ApiClient(settings, transport=transport) as client:
        yield DispatchGateway(client)


@pytest.mark.asyncio
async def test_flagged_items_are_mapped(gateway, backend_app) -> None:
    """Activities and documents map onto basket items, unwrapping pagination."""

    activities = await gateway.list_flagged_items(7, ItemKind.ACTIVITY)
    documents = await gateway.list_flagged_items(7, ItemKind.DOCUMENT)

    assert activities[0].label == "Call bank"
    assert activities[0].source_id == 1
    assert activities[0].mail_title == "Statement"
    assert documents[0].label == "budget.pdf"
    assert documents[0].source_id is None
    assert documents[0].group_number == 2.0
    assert documents[0].document_number == 5

    first, second = backend_app.state.requests
    assert first["query"] == {"sag": "7", "skal_mailes": "true"}
    assert second["query"] == {"sag_id": "7", "skal_mailes": "true"}
    assert first["session"] == "session-1"
    assert first["csrf"] is None


@pytest.mark.asyncio
async def test_mutations_send_csrf_header(gateway, backend_app) -> None:
    """Writes carry the CSRF token and 204 responses are accepted."""

    await gateway.set_item_source(ItemKind.ACTIVITY, 11, 2)
    await gateway.set_item_title(ItemKind.ACTIVITY, 11, None)
    await gateway.reset_basket(7)

    patch, title, reset = backend_app.state.requests
    assert patch["method"] == "PATCH"
    assert patch["path"] == "/api/aktiviteter/11/"
    assert patch["csrf"] == CSRF
    assert patch["json"] == {"informations_kilde_id": 2}
    assert title["json"] == {"mail_titel": ""}
    assert reset["path"] == "/api/sager/7/reset_mail_basket/"
    assert reset["csrf"] == CSRF


@pytest.mark.asyncio
async def test_error_detail_is_surfaced(gateway) -> None:
    """The server's detail or error field becomes the ApiError detail."""

    with pytest.raises(ApiError) as locked:
        await gateway.clear_item_flag(ItemKind.DOCUMENT, 21)
    assert locked.value.status_code == 403
    assert locked.value.detail == "Document is locked"

    with pytest.raises(ApiError) as refused:
        await gateway.complete_message(5)
    assert refused.value.detail == "Message is not in Outlook"


@pytest.mark.asyncio
async def test_unparseable_error_body_has_no_detail(gateway) -> None:
    """An HTML error page yields a status without detail."""

    with pytest.raises(ApiError) as failure:
        await gateway.retry_message(404)

    assert failure.value.status_code == 502
    assert failure.value.detail is None


@pytest.mark.asyncio
async def test_reference_data(gateway) -> None:
    """Sources, case record and templates are read from their endpoints."""

    sources = await gateway.list_sources()
    case = await gateway.fetch_case(7)
    templates = await gateway.list_templates()

    assert [s.name for s in sources] == ["Bank", "Mægler"]
    assert case.case_number == "2024017"
    assert case.address == "Main St 1, 8000 Aarhus"
    assert case.standard_account_id == 4
    assert case.standard_account_email == "cases@firm.example"
    assert [(t.id, t.source_id) for t in templates] == [(1, 1), (2, None)]


@pytest.mark.asyncio
async def test_render_sends_task_list_context(gateway, backend_app) -> None:
    """The render request carries case id and free-text context."""

    rendered = await gateway.render(
        1, 7, RenderContext(task_list="- Call bank\n", name="Anna", email="")
    )

    assert rendered.subject == "Case 7"
    assert "- Call bank" in rendered.body
    assert rendered.source_id == 1
    assert rendered.inferred_recipient == "loans@bank.example"
    assert backend_app.state.requests[-1]["csrf"] == CSRF


@pytest.mark.asyncio
async def test_outgoing_messages_and_legacy_status(gateway) -> None:
    """Messages parse, and the legacy Sent status reads as InOutlook."""

    messages = await gateway.list_messages(7, 5)

    assert [m.status for m in messages] == [
        MessageStatus.IN_OUTLOOK,
        MessageStatus.ERROR,
    ]
    assert messages[0].created_at is not None
    assert messages[0].created_at.tzinfo is not None
    assert messages[1].error_message == "timeout"


@pytest.mark.asyncio
async def test_create_message_posts_draft(gateway, backend_app) -> None:
    """New messages are created in Draft with the chosen account."""

    message = await gateway.create_message(
        DraftRequest(
            case_id=7,
            source_id=1,
            recipient="loans@bank.example",
            subject="Docs",
            body_html="<p>Hi</p>",
            account_id=4,
        )
    )

    assert message is not None
    assert message.id == 6
    assert message.status is MessageStatus.DRAFT
    assert message.account_id == 4
    sent = backend_app.state.requests[-1]["json"]
    assert sent["status"] == "Draft"
    assert sent["outlook_account"] == 4
    assert sent["sag"] == 7


@pytest.mark.asyncio
async def test_delete_and_presence_endpoints(gateway, backend_app) -> None:
    """Deletion returns nothing; accounts and agents map to domain models."""

    await gateway.delete_message(5)
    accounts = await gateway.list_accounts(force_sync=True)
    await gateway.set_account_active(4, False)
    agents = await gateway.list_agents()

    assert accounts[0].active is True
    assert accounts[0].last_synced_at is not None
    assert agents[0].machine_name == "PC-1"
    assert agents[0].last_seen_at.tzinfo is not None

    delete, listing, toggle, _ = backend_app.state.requests
    assert delete["method"] == "DELETE"
    assert delete["csrf"] == CSRF
    assert listing["query"] == {"sync": "true"}
    assert toggle["csrf"] == CSRF


@pytest.mark.asyncio
async def test_connection_failure_becomes_transport_error() -> None:
    """A request that never reaches the server raises TransportError."""

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    settings = ApiSettings(base_url="http://testserver/api")
    async with ApiClient(settings, transport=httpx.MockTransport(refuse)) as client:
        with pytest.raises(TransportError):
            await DispatchGateway(client).list_sources()


@pytest.mark.asyncio
async def test_cases_with_basket(gateway, backend_app) -> None:
    """Cases holding flagged items are listed for basket selection."""

    cases = await gateway.list_cases_with_basket()

    assert [(c.id, c.case_number, c.alias) for c in cases] == [
        (7, "2024-17", "Villa"),
        (9, "2024020", None),
    ]
    assert backend_app.state.requests[-1]["path"] == "/api/sager/with_mail_basket/"


@pytest.mark.asyncio
async def test_malformed_success_body_raises_payload_error() -> None:
    """A 2xx body of the wrong shape is not reported as an HTTP failure."""

    bodies = {
        "/api/kerne/informationskilder/": {"unexpected": True},
        "/api/emails/bridges/": [{"machine_name": "PC-1"}],
    }

    def respond(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=bodies[request.url.path])

    settings = ApiSettings(base_url="http://testserver/api")
    async with ApiClient(settings, transport=httpx.MockTransport(respond)) as client:
        gateway = DispatchGateway(client)
        with pytest.raises(PayloadError):
            await gateway.list_sources()
        with pytest.raises(PayloadError) as failure:
            await gateway.list_agents()

    assert not isinstance(failure.value, ApiError)
