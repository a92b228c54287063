from app.routes import serious_plan as serious_plan_routes
from app.services.artifact_seeder import DEFAULT_ARTIFACT_KEYS
from app.services.serious_plan_service import InitResult
from app.worker import get_supervisor
from tests.fakes.factories import auth_headers, make_transcript, make_user
from tests.fakes.fake_llm import artifacts_reply


async def test_requires_a_session(client):
    response = await client.post("/api/serious-plan")
    assert response.status_code == 401

    response = await client.get("/api/serious-plan/latest", headers={"Authorization": "Bearer nonsense"})
    assert response.status_code == 401


async def test_create_is_idempotent(client, db, user, fake_llm):
    fake_llm.on("artifacts", artifacts_reply(DEFAULT_ARTIFACT_KEYS))
    await make_transcript(db, user)
    headers = auth_headers(user)

    first = await client.post("/api/serious-plan", headers=headers)
    second = await client.post("/api/serious-plan", headers=headers)
    assert first.status_code == 200 and second.status_code == 200
    assert first.json()["created"] is True
    assert second.json() == {"success": True, "planId": first.json()["planId"], "created": False}

    await get_supervisor().wait_idle(timeout=5)
    response = await client.get(f"/api/serious-plan/{first.json()['planId']}", headers=headers)
    body = response.json()
    assert body["status"] == "ready"
    assert len(body["artifacts"]) == 8
    assert body["statusSummary"]["artifactsReady"] is True
    assert body["statusSummary"]["letterReady"] is True
    assert "clientDossier" not in body


async def test_create_before_plan_card_is_retryable(client, db, user):
    await make_transcript(db, user, plan_card=None)

    response = await client.post("/api/serious-plan", headers=auth_headers(user))
    assert response.status_code == 409
    assert response.json()["detail"]["retryable"] is True


async def test_other_users_plan_is_forbidden(client, db, user, fake_llm):
    fake_llm.on("artifacts", artifacts_reply(DEFAULT_ARTIFACT_KEYS))
    await make_transcript(db, user)
    created = await client.post("/api/serious-plan", headers=auth_headers(user))
    await get_supervisor().wait_idle(timeout=5)

    intruder = await make_user(db, email="sam@example.com")
    response = await client.get(f"/api/serious-plan/{created.json()['planId']}", headers=auth_headers(intruder))
    assert response.status_code == 403


async def test_unknown_plan_is_404(client, user):
    response = await client.get("/api/serious-plan/does-not-exist", headers=auth_headers(user))
    assert response.status_code == 404

    response = await client.get("/api/serious-plan/latest", headers=auth_headers(user))
    assert response.status_code == 404


async def test_regenerate_while_generating_is_409(client, db, user, fake_llm):
    gate = fake_llm.gate("artifacts")
    fake_llm.on("artifacts", artifacts_reply(DEFAULT_ARTIFACT_KEYS))
    await make_transcript(db, user)
    headers = auth_headers(user)
    plan_id = (await client.post("/api/serious-plan", headers=headers)).json()["planId"]

    response = await client.post(f"/api/serious-plan/{plan_id}/regenerate", headers=headers)
    assert response.status_code == 409
    assert response.json()["detail"]["retryable"] is True

    gate.set()
    await get_supervisor().wait_idle(timeout=5)
    response = await client.post(f"/api/serious-plan/{plan_id}/regenerate", headers=headers)
    assert response.status_code == 200
    assert response.json()["artifactKeys"] == []


async def test_bundle_pdf_waits_for_ready_plan(client, db, user, fake_llm):
    gate = fake_llm.gate("artifacts")
    await make_transcript(db, user)
    headers = auth_headers(user)
    plan_id = (await client.post("/api/serious-plan", headers=headers)).json()["planId"]

    response = await client.post(f"/api/serious-plan/{plan_id}/bundle-pdf", headers=headers)
    assert response.status_code == 409

    gate.set()
    await get_supervisor().wait_idle(timeout=5)


async def test_latest_returns_own_plan(client, db, user, fake_llm):
    fake_llm.on("artifacts", artifacts_reply(DEFAULT_ARTIFACT_KEYS))
    await make_transcript(db, user)
    headers = auth_headers(user)
    plan_id = (await client.post("/api/serious-plan", headers=headers)).json()["planId"]
    await get_supervisor().wait_idle(timeout=5)

    response = await client.get("/api/serious-plan/latest", headers=headers)
    assert response.status_code == 200
    assert response.json()["id"] == plan_id
    assert response.json()["summaryMetadata"]["planHorizonType"] == "6_months"


async def test_init_failure_hides_storage_error(client, db, user, monkeypatch):
    await make_transcript(db, user)

    async def failing_init(*args, **kwargs):
        return InitResult(plan_id="", success=False, error="IntegrityError [parameters: ('full transcript',)]")

    monkeypatch.setattr(serious_plan_routes, "initialize_serious_plan", failing_init)
    response = await client.post("/api/serious-plan", headers=auth_headers(user))

    assert response.status_code == 500
    assert "transcript" not in response.json()["detail"]
    assert "IntegrityError" not in response.json()["detail"]


async def test_dev_routes_are_not_mounted_by_default(client, user):
    response = await client.post("/api/dev/reset", headers=auth_headers(user))
    assert response.status_code == 404
