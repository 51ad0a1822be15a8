import asyncio
import base64

from bioenroll.config import get_settings

from conftest import TEMPLATE_BYTES, hardware_capture, make_settings

TEMPLATE_B64 = base64.b64encode(b"direct-template").decode()


async def enroll(client, runtime, user_id=42, finger_id=3, name="Ana"):
    response = await client.post(
        "/bio-enroll/enroll-finger", json={"userId": user_id, "fingerId": finger_id, "name": name}
    )
    assert response.status_code == 200, response.text
    enrollment_id = response.json()["enrollmentId"]
    await runtime.supervisor.join(enrollment_id)
    return enrollment_id


async def test_root_lists_endpoints(client):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["endpoints"]["health"] == "/bio-enroll/health"


async def test_full_enrollment_flow(client, runtime):
    response = await client.post("/bio-enroll/enroll-finger", json={"userId": 42, "fingerId": 3})
    started = response.json()

    assert response.status_code == 200
    assert started["success"] is True
    assert started["userId"] == 42
    assert started["fingerId"] == 3

    enrollment_id = started["enrollmentId"]
    await runtime.supervisor.join(enrollment_id)

    progress = (await client.get(f"/bio-enroll/enrollment-progress/{enrollment_id}")).json()
    assert progress["status"] == "complete"
    assert progress["templateSize"] == len(TEMPLATE_BYTES)
    assert progress["qualityScores"] == [95, 95, 95]
    assert progress["userName"] == "User_42"
    assert progress["message"] == "Enrollment complete - awaiting confirmation"

    saved = await client.post("/bio-enroll/save-enrollment", json={"enrollmentId": enrollment_id})
    body = saved.json()
    assert saved.status_code == 200, saved.text
    assert body["fuid"]
    assert body["templateSize"] == len(TEMPLATE_BYTES)
    assert body["samplesCollected"] == 3

    gone = await client.get(f"/bio-enroll/enrollment-progress/{enrollment_id}")
    assert gone.status_code == 404
    assert gone.json()["detail"] == {"success": False, "message": "Enrollment not found"}

    status = (await client.get("/bio-enroll/enrollment-status/42")).json()
    assert status["totalEnrolled"] == 1
    assert status["enrolledFingers"][0]["fingerId"] == 3
    assert status["enrolledFingers"][0]["fuid"] == body["fuid"]


async def test_failed_enrollment_is_reported_in_progress(client, runtime, device):
    device.enroll_result = RuntimeError("Reader not found")

    enrollment_id = await enroll(client, runtime)
    progress = (await client.get(f"/bio-enroll/enrollment-progress/{enrollment_id}")).json()

    assert progress["status"] == "error"
    assert progress["error"] == "Reader not found"
    assert progress["message"] == "Enrollment failed"


async def test_unknown_enrollment_is_404(client):
    response = await client.get("/bio-enroll/enrollment-progress/does-not-exist")

    assert response.status_code == 404
    assert response.json()["detail"]["message"] == "Enrollment not found"


async def test_enrolled_finger_is_rejected(client, device):
    saved = await client.post("/bio-enroll/save-enrollment", json={
        "userId": 42, "fingerId": 3, "templateBase64": TEMPLATE_B64,
    })
    assert saved.status_code == 200
    response = await client.post("/bio-enroll/enroll-finger", json={"userId": 42, "fingerId": 3})

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["success"] is False
    assert detail["message"] == "Finger 3 is already enrolled for this user"
    assert detail["hasValidData"] is True
    assert device.calls["enroll"] == 0


async def test_check_finger(client):
    available = (await client.get("/bio-enroll/check-finger/42/3")).json()
    assert available["available"] is True
    assert available["existingTemplate"] is False

    await client.post("/bio-enroll/save-enrollment", json={
        "userId": 42, "fingerId": 3, "templateBase64": TEMPLATE_B64,
    })

    response = await client.get("/bio-enroll/check-finger/42/3")
    assert response.status_code == 200
    assert response.json()["available"] is False
    assert response.json()["hasValidData"] is True


async def test_check_finger_rejects_out_of_range(client):
    response = await client.get("/bio-enroll/check-finger/42/12")

    assert response.status_code == 400
    assert "between 0 and 9" in response.json()["detail"]["message"]


async def test_enroll_requires_identity(client, device):
    response = await client.post("/bio-enroll/enroll-finger", json={"fingerId": 3})

    assert response.status_code == 400
    assert response.json()["detail"]["message"] == "User ID and Finger ID are required"
    assert device.calls["enroll"] == 0


async def test_save_requires_template(client):
    response = await client.post("/bio-enroll/save-enrollment", json={"userId": 42, "fingerId": 3})

    assert response.status_code == 400
    assert response.json()["detail"]["message"] == "User ID, Finger ID, and template data are required"


async def test_delete_finger(client):
    await client.post("/bio-enroll/save-enrollment", json={
        "userId": 42, "fingerId": 3, "templateBase64": TEMPLATE_B64,
    })

    response = await client.delete("/bio-enroll/delete-finger/42/3")

    assert response.status_code == 200
    assert response.json()["rowsAffected"] == 1
    assert (await client.get("/bio-enroll/check-finger/42/3")).json()["available"] is True


async def test_capture_fingerprint(client, device):
    device.captures = [hardware_capture("captured-specimen")]

    response = await client.post("/bio-enroll/capture-fingerprint")

    assert response.status_code == 200
    assert response.json()["fingerprintData"]["captureData"] == "captured-specimen"
    assert device.calls["cleanup"] == 1


async def test_capture_without_finger_is_500(client):
    response = await client.post("/bio-enroll/capture-fingerprint")

    assert response.status_code == 500
    assert response.json()["detail"]["message"] == "Fingerprint capture failed"


async def test_health_does_not_need_auth(app, client):
    app.dependency_overrides[get_settings] = lambda: make_settings(api_token="secret")

    response = await client.get("/bio-enroll/health")

    body = response.json()
    assert response.status_code == 200
    assert body["sdkReady"] is True
    assert body["deviceInfo"]["serialNumber"] == "SN-1"


async def test_protected_routes_need_bearer_token(app, client):
    app.dependency_overrides[get_settings] = lambda: make_settings(api_token="secret")

    missing = await client.get("/bio-enroll/check-finger/42/3")
    wrong = await client.get("/bio-enroll/check-finger/42/3", headers={"Authorization": "Bearer nope"})
    ok = await client.get("/bio-enroll/check-finger/42/3", headers={"Authorization": "Bearer secret"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert ok.status_code == 200


async def test_cancel_enrollment(client, runtime, device):
    device.enroll_gate = asyncio.Event()
    response = await client.post("/bio-enroll/enroll-finger", json={"userId": 7, "fingerId": 1})
    enrollment_id = response.json()["enrollmentId"]
    await asyncio.sleep(0)

    cancelled = await client.delete(f"/bio-enroll/enrollment-progress/{enrollment_id}")
    await runtime.supervisor.join(enrollment_id)

    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "error"
    progress = (await client.get(f"/bio-enroll/enrollment-progress/{enrollment_id}")).json()
    assert progress["error"] == "Enrollment cancelled"
