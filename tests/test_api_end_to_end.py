"""
End-to-end tests through the HTTP API
"""
import io
import os

import pytest
from PIL import Image

from conftest import auth, make_task, make_user
from feedbackatm.models.models import CleaningTask, Company, ServicePoint, TaskStatus, User, UserRole
from feedbackatm.services.task_generator import generate_daily_tasks


def png_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (16, 16), (10, 120, 200)).save(buf, format="PNG")
    return buf.getvalue()


ADMIN = auth("admin")


@pytest.fixture
def world(client, db):
    """Company, one point and a cleaner set up through the admin API, plus a manager."""
    resp = client.post("/api/admin/companies", json={"name": "Acme"}, headers=ADMIN)
    assert resp.status_code == 201
    company_id = resp.json()["company"]["id"]

    resp = client.post(
        "/api/admin/service-points",
        json={
            "name": "P1",
            "type": "ATM",
            "address": "1 Fountain Sq",
            "latitude": "40.37",
            "longitude": 49.83,
            "company_id": company_id,
        },
        headers=ADMIN,
    )
    assert resp.status_code == 201
    point_id = resp.json()["service_point"]["id"]

    resp = client.post(
        "/api/admin/users",
        json={"username": "bob", "password": "pw", "role": "CLEANER", "company_id": company_id},
        headers=ADMIN,
    )
    assert resp.status_code == 201
    bob_id = resp.json()["user"]["id"]

    resp = client.post(f"/api/admin/users/{bob_id}/assign-points", json={"point_ids": [point_id]}, headers=ADMIN)
    assert resp.status_code == 200

    company = db.query(Company).filter(Company.name == "Acme").one()
    make_user(db, "mia", role=UserRole.MANAGER, company=company)
    return {"company_id": company_id, "point_id": point_id, "bob_id": bob_id}


class TestHealth:
    def test_health(self, client):
        """Test the liveness endpoint"""
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "service": "feedbackatm-backend"}


class TestDailyFlow:
    """Test the generate, complete, review cycle"""

    def test_complete_by_point_then_comment(self, client, db, storage, world):
        """Test a cleaner completing today's task with a photo and a manager commenting on it"""
        bob = auth("bob")
        tasks = client.get("/api/cleaner/tasks", headers=bob).json()["tasks"]
        assert len(tasks) == 1
        assert tasks[0]["status"] == TaskStatus.PENDING.value
        assert tasks[0]["service_point"]["name"] == "P1"

        resp = client.put(
            f"/api/cleaner/complete-by-point/{world['point_id']}",
            data={"notes": "all clean"},
            files={"photoAfter": ("after.png", png_bytes(), "image/png")},
            headers=bob,
        )
        assert resp.status_code == 200
        task = resp.json()["task"]
        assert task["id"] == tasks[0]["id"]
        assert task["status"] == TaskStatus.COMPLETED.value
        assert task["notes"] == "all clean"
        assert task["completed_at"] is not None
        assert task["photo_before"] is None
        assert task["photo_after"].startswith("/uploads/cleaning-")
        assert storage.exists(task["photo_after"])

        assert client.get("/api/cleaner/tasks", headers=bob).json()["tasks"] == []
        history = client.get("/api/cleaner/history", headers=bob).json()["tasks"]
        assert [t["id"] for t in history] == [task["id"]]

        resp = client.put(
            f"/api/manager/tasks/{task['id']}/comment",
            json={"manager_notes": "  looks good "},
            headers=auth("mia"),
        )
        assert resp.status_code == 200
        reviewed = resp.json()["task"]
        assert reviewed["manager_notes"] == "looks good"
        assert reviewed["status"] == TaskStatus.COMPLETED.value

    def test_rejected_upload_changes_nothing(self, client, db, storage, world):
        """Test that a non-image upload leaves the task open and storage empty"""
        bob = auth("bob")
        task_id = client.get("/api/cleaner/tasks", headers=bob).json()["tasks"][0]["id"]
        resp = client.put(
            f"/api/cleaner/tasks/{task_id}/complete",
            files={
                "photoBefore": ("before.png", png_bytes(), "image/png"),
                "photoAfter": ("notes.txt", b"not an image", "text/plain"),
            },
            headers=bob,
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Only image files are allowed"
        db.expire_all()
        assert db.query(CleaningTask).one().status == TaskStatus.PENDING.value
        assert os.listdir(storage.base_dir) == []

    def test_storage_failure_leaves_no_task(self, client, db, storage, world, monkeypatch):
        """Test that a failed photo write does not leave a fresh PENDING task behind"""
        def broken_save(data, name):
            raise OSError("disk full")

        monkeypatch.setattr(storage, "save", broken_save)
        with pytest.raises(OSError):
            client.put(
                f"/api/cleaner/complete-by-point/{world['point_id']}",
                files={"photoAfter": ("after.png", png_bytes(), "image/png")},
                headers=auth("bob"),
            )
        db.expire_all()
        assert db.query(CleaningTask).count() == 0

    def test_start_then_complete_by_id(self, client, world):
        """Test the explicit start and complete endpoints"""
        bob = auth("bob")
        task_id = client.get("/api/cleaner/tasks", headers=bob).json()["tasks"][0]["id"]
        resp = client.put(f"/api/cleaner/tasks/{task_id}/start", headers=bob)
        assert resp.json()["task"]["status"] == TaskStatus.IN_PROGRESS.value
        assert client.put(f"/api/cleaner/tasks/{task_id}/start", headers=bob).status_code == 404
        resp = client.put(f"/api/cleaner/tasks/{task_id}/complete", headers=bob)
        assert resp.status_code == 200
        assert resp.json()["task"]["status"] == TaskStatus.COMPLETED.value
        assert client.put(f"/api/cleaner/tasks/{task_id}/complete", headers=bob).status_code == 404

    def test_assigned_points(self, client, world):
        """Test that the cleaner sees their assigned points under both keys"""
        body = client.get("/api/cleaner/assigned-points", headers=auth("bob")).json()
        assert [p["id"] for p in body["service_points"]] == [world["point_id"]]
        assert body["atms"] == body["service_points"]

    def test_invalid_ids(self, client, world):
        """Test that malformed ids are 400"""
        resp = client.put("/api/cleaner/tasks/not-a-uuid/start", headers=auth("bob"))
        assert resp.status_code == 400
        resp = client.put("/api/cleaner/complete-by-point/123", headers=auth("bob"))
        assert resp.status_code == 400


class TestAdminApi:
    """Tests for admin user and assignment management"""

    def test_duplicate_username(self, client, world):
        """Test that a second user with the same name is a conflict"""
        resp = client.post(
            "/api/admin/users",
            json={"username": "bob", "password": "pw", "role": "CLEANER"},
            headers=ADMIN,
        )
        assert resp.status_code == 409

    def test_user_creation_is_mirrored(self, client, identity, world):
        """Test that the new user is pushed to the identity provider after the response"""
        assert [c[:3] for c in identity.calls] == [("create", "bob", "CLEANER")]
        assert identity.calls[0][3]

    def test_user_update_and_delete_mirrored(self, client, db, identity, world):
        """Test that role changes and deletions are mirrored"""
        resp = client.put(f"/api/admin/users/{world['bob_id']}", json={"role": "SUPERVISOR"}, headers=ADMIN)
        assert resp.status_code == 200
        assert resp.json()["user"]["role"] == "SUPERVISOR"
        resp = client.delete(f"/api/admin/users/{world['bob_id']}", headers=ADMIN)
        assert resp.json() == {"message": "User deleted successfully"}
        assert [c[0] for c in identity.calls] == ["create", "update", "delete"]
        assert db.query(User).filter(User.username == "bob").first() is None

    def test_role_change_drops_assignments(self, client, db, world):
        """Test that a user who stops being a cleaner loses their points and gets no tasks"""
        url = f"/api/admin/users/{world['bob_id']}"
        assert client.put(url, json={"email": "bob@acme.test"}, headers=ADMIN).status_code == 200
        points = client.get(f"{url}/assigned-points", headers=ADMIN).json()["service_points"]
        assert len(points) == 1

        assert client.put(url, json={"role": "MANAGER"}, headers=ADMIN).status_code == 200
        assert client.get(f"{url}/assigned-points", headers=ADMIN).json()["service_points"] == []
        db.expire_all()
        assert generate_daily_tasks(db) == 0
        assert db.query(CleaningTask).count() == 0

    def test_assign_points_rejects_unknown(self, client, world):
        """Test that unknown points fail the whole assignment"""
        resp = client.post(
            f"/api/admin/users/{world['bob_id']}/assign-points",
            json={"point_ids": [world["point_id"], "00000000-0000-0000-0000-000000000000"]},
            headers=ADMIN,
        )
        assert resp.status_code == 400
        points = client.get(f"/api/admin/users/{world['bob_id']}/assigned-points", headers=ADMIN).json()
        assert len(points["service_points"]) == 1

    def test_admin_only(self, client, world):
        """Test that cleaners cannot reach admin endpoints"""
        assert client.get("/api/admin/users", headers=auth("bob")).status_code == 403

    def test_report_export_formats(self, client, world):
        """Test excel export and the invalid format error"""
        resp = client.get("/api/admin/reports/export?format=excel", headers=ADMIN)
        assert resp.status_code == 200
        assert resp.headers["content-disposition"].startswith("attachment; filename=report_")
        resp = client.get("/api/admin/reports/export?format=doc", headers=ADMIN)
        assert resp.status_code == 400

    def test_company_report_filename(self, client, world):
        """Test that company exports carry the company slug"""
        resp = client.get(f"/api/admin/reports/export?format=pdf&company_id={world['company_id']}", headers=ADMIN)
        assert resp.status_code == 200
        assert resp.content.startswith(b"%PDF")
        assert "report_acme_" in resp.headers["content-disposition"]


class TestManagerApi:
    """Tests for manager task and route endpoints"""

    def test_manager_needs_company(self, client, db):
        """Test that a manager without a company is rejected"""
        make_user(db, "drifter", role=UserRole.MANAGER)
        resp = client.get("/api/manager/tasks", headers=auth("drifter"))
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Manager not assigned to a company"

    def test_task_list_generates(self, client, world):
        """Test that reading the company list generates today's tasks"""
        tasks = client.get("/api/manager/tasks", headers=auth("mia")).json()["tasks"]
        assert len(tasks) == 1
        assert tasks[0]["cleaner"]["username"] == "bob"

    def test_delete_guard(self, client, db, world):
        """Test that only PENDING and OVERDUE tasks can be deleted"""
        bob = db.query(User).filter(User.username == "bob").one()
        point = db.get(ServicePoint, bob.assignments[0].service_point_id)
        done = make_task(db, bob, point, TaskStatus.COMPLETED)
        open_task = make_task(db, bob, point, TaskStatus.PENDING)
        mia = auth("mia")
        assert client.delete(f"/api/manager/tasks/{done.id}", headers=mia).status_code == 404
        resp = client.delete(f"/api/manager/tasks/{open_task.id}", headers=mia)
        assert resp.json() == {"message": "Task deleted successfully"}

    def test_create_task_requires_assignment(self, client, db, world):
        """Test manual task creation against the assignment table"""
        mia = auth("mia")
        company = db.query(Company).filter(Company.name == "Acme").one()
        carl = make_user(db, "carl", company=company)
        body = {"service_point_id": world["point_id"], "cleaner_id": str(carl.id)}
        assert client.post("/api/manager/tasks", json=body, headers=mia).status_code == 400
        body["cleaner_id"] = world["bob_id"]
        body["scheduled_at"] = "2024-05-10T12:00:00+02:00"
        resp = client.post("/api/manager/tasks", json=body, headers=mia)
        assert resp.status_code == 201
        assert resp.json()["task"]["scheduled_at"] == "2024-05-10T10:00:00"

    def test_export_csv(self, client, world):
        """Test the manager CSV export"""
        client.get("/api/manager/tasks", headers=auth("mia"))
        resp = client.get("/api/manager/tasks/export?format=csv", headers=auth("mia"))
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert "filename=tasks_" in resp.headers["content-disposition"]
        assert resp.content.startswith(b"\xef\xbb\xbf")
        assert b'"P1"' in resp.content

    def test_observer_reads_but_cannot_write(self, client, db, world):
        """Test that observers can list tasks but not comment"""
        company = db.query(Company).filter(Company.name == "Acme").one()
        make_user(db, "olga", role=UserRole.OBSERVER, company=company)
        olga = auth("olga")
        tasks = client.get("/api/manager/tasks", headers=olga).json()["tasks"]
        resp = client.put(f"/api/manager/tasks/{tasks[0]['id']}/comment", json={"manager_notes": "hi"}, headers=olga)
        assert resp.status_code == 403

    def test_stats_and_dashboard(self, client, world):
        """Test the manager counters and dashboard"""
        mia = auth("mia")
        client.get("/api/manager/tasks", headers=mia)
        stats = client.get("/api/manager/stats", headers=mia).json()["stats"]
        assert stats["total_points"] == 1
        assert stats["total_tasks"] == 1
        dash = client.get("/api/manager/dashboard-stats", headers=mia).json()
        assert dash["stats"]["today_total_tasks"] == 1
        cleaners = client.get("/api/manager/cleaners", headers=mia).json()["cleaners"]
        assert cleaners == [{"id": world["bob_id"], "username": "bob"}]

    def test_route_lifecycle(self, client, db, world):
        """Test route create, list, update and delete, with assignments kept after delete"""
        mia = auth("mia")
        company = db.query(Company).filter(Company.name == "Acme").one()
        p2 = ServicePoint(name="P2", type="BUS_STOP", address="2 Main", latitude=1.0, longitude=2.0,
                          company_id=company.id)
        db.add(p2)
        db.commit()

        resp = client.post(
            "/api/manager/routes",
            json={"name": "Morning", "cleaner_id": world["bob_id"], "service_point_ids": [str(p2.id), world["point_id"]]},
            headers=mia,
        )
        assert resp.status_code == 201
        route = resp.json()["route"]
        assert route["order_num"] == 1
        assert [p["service_point"]["name"] for p in route["points"]] == ["P2", "P1"]

        routes = client.get("/api/manager/routes", headers=mia).json()["routes"]
        assert [r["id"] for r in routes] == [route["id"]]

        resp = client.put(f"/api/manager/routes/{route['id']}", json={"name": "Evening"}, headers=mia)
        assert resp.json()["route"]["name"] == "Evening"

        resp = client.delete(f"/api/manager/routes/{route['id']}", headers=mia)
        assert resp.json() == {"message": "Route deleted"}
        assigned = client.get(f"/api/admin/users/{world['bob_id']}/assigned-points", headers=ADMIN).json()
        assert {p["name"] for p in assigned["service_points"]} == {"P1", "P2"}

    def test_route_blank_name(self, client, world):
        """Test that a whitespace-only route name is rejected"""
        resp = client.post(
            "/api/manager/routes",
            json={"name": "   ", "cleaner_id": world["bob_id"], "service_point_ids": []},
            headers=auth("mia"),
        )
        assert resp.status_code == 422
