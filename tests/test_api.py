"""
Tests for the HTTP endpoints.
"""

import time
import zipfile
from io import BytesIO

from risk_tracker import main
from risk_tracker.exceptions import CommitError
from risk_tracker.store import InMemoryRecordStore


class FailingCommitStore(InMemoryRecordStore):
    def commit_batch(self, records):
        raise CommitError("quota exceeded: 3 of 4 writes rejected")


def upload(client, content, filename="students.csv"):
    return client.post("/upload", files={"file": (filename, content, "text/csv")})


def wait_for_alert(client, attempts=50):
    for _ in range(attempts):
        data = client.get("/alerts/current").json()
        if data["alert"] is not None:
            return data
        time.sleep(0.02)
    return data


class TestHealthEndpoint:
    """Test health check endpoint."""

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["live_alerts"] == True


class TestUploadEndpoints:
    """Test upload preview and commit."""

    def test_upload_preview(self, client, sample_csv):
        response = upload(client, sample_csv)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] == True
        assert data["total"] == 4
        assert data["summary"] == {"Green": 2, "Yellow": 1, "Red": 1, "Total": 4}
        assert [r["identity"] for r in data["preview"]] == ["101", "102", "103", "104"]
        assert data["preview"][1]["risk_tier"] == "Red"
        # nothing is persisted before commit
        assert client.get("/students").json()["results"] == []

    def test_upload_preview_is_limited(self, client, monkeypatch):
        monkeypatch.setattr(main, "PREVIEW_LIMIT", 2)
        rows = "".join(f"{i},Student {i},80,80,paid\n" for i in range(5))
        content = ("id,name,attendance,score,fee\n" + rows).encode("utf-8")

        data = upload(client, content).json()

        assert data["total"] == 5
        assert len(data["preview"]) == 2

    def test_upload_rejects_wrong_extension(self, client, sample_csv):
        response = upload(client, sample_csv, filename="students.pdf")
        assert response.status_code == 400

    def test_upload_malformed_file(self, client):
        response = upload(client, b"enroll,name\n1,A\n2,B,C,D\n")

        assert response.status_code == 400
        assert response.json()["detail"].startswith("Error parsing file")

    def test_upload_without_records(self, client):
        response = upload(client, b"enroll,name,fee\n,,\n")

        assert response.status_code == 400
        assert "No student records" in response.json()["detail"]

    def test_commit_persists_batch(self, client, sample_csv):
        batch_id = upload(client, sample_csv).json()["batch_id"]

        response = client.post("/commit", params={"batch_id": batch_id})

        assert response.status_code == 200
        assert response.json()["written"] == 4
        students = client.get("/students").json()
        assert len(students["results"]) == 4
        assert students["summary"]["Red"] == 1

        # the batch is consumed
        assert client.post("/commit", params={"batch_id": batch_id}).status_code == 404

    def test_commit_failure_is_surfaced(self, client, sample_csv):
        upload(client, sample_csv)
        main.app.state.store = FailingCommitStore()

        response = client.post("/commit")

        assert response.status_code == 502
        assert "quota exceeded" in response.json()["detail"]
        # batch kept for retry
        assert len(main.pending_batches) == 1

    def test_upload_zip_that_is_not_a_workbook(self, client):
        buffer = BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            archive.writestr("hello.txt", "not a spreadsheet")

        response = upload(client, buffer.getvalue(), filename="students.xlsx")

        assert response.status_code == 400
        assert response.json()["detail"].startswith("Error parsing file")

    def test_uncommitted_batches_are_capped(self, client, sample_csv, monkeypatch):
        """Only the newest uploads stay cached; older ones can no longer be committed."""
        monkeypatch.setattr(main, "MAX_PENDING_BATCHES", 2)

        batch_ids = [upload(client, sample_csv).json()["batch_id"] for _ in range(3)]

        assert list(main.pending_batches) == batch_ids[1:]
        assert client.post("/commit", params={"batch_id": batch_ids[0]}).status_code == 404
        assert client.post("/commit", params={"batch_id": batch_ids[2]}).status_code == 200

    def test_commit_without_upload(self, client):
        assert client.post("/commit").status_code == 404


class TestStudentEndpoints:
    """Test listing, filtering and deleting stored students."""

    def test_filter_and_search(self, client, sample_csv):
        upload(client, sample_csv)
        client.post("/commit")

        red = client.get("/students", params={"risk": "Red"}).json()["results"]
        assert [r["display_name"] for r in red] == ["Jane Smith"]

        found = client.get("/students", params={"search": "doe"}).json()["results"]
        assert [r["identity"] for r in found] == ["101"]

    def test_delete_student(self, client, sample_csv):
        upload(client, sample_csv)
        client.post("/commit")

        response = client.delete("/students/101")

        assert response.status_code == 200
        identities = [r["identity"] for r in client.get("/students").json()["results"]]
        assert "101" not in identities
        assert len(identities) == 3

    def test_delete_unknown_student(self, client):
        response = client.delete("/students/nobody")

        assert response.status_code == 404
        assert "Error deleting student" in response.json()["detail"]

    def test_download_csv(self, client, sample_csv):
        upload(client, sample_csv)
        client.post("/commit")

        response = client.get("/download.csv")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        lines = response.text.strip().splitlines()
        assert lines[0].startswith("Student ID,Enroll ID,Name")
        assert len(lines) == 5


class TestAlertEndpoints:
    """Test the live alert surface."""

    def test_no_alert_initially(self, client):
        data = client.get("/alerts/current").json()
        assert data["alert"] is None
        assert data["pending"] == 0

    def test_commit_with_red_student_raises_alert(self, client, sample_csv):
        upload(client, sample_csv)
        client.post("/commit")

        data = wait_for_alert(client)

        assert data["alert"] is not None
        assert [r["identity"] for r in data["alert"]["records"]] == ["102"]
        assert data["remaining_seconds"] > 0

    def test_recommit_does_not_realert(self, client, sample_csv):
        upload(client, sample_csv)
        client.post("/commit")
        first = wait_for_alert(client)

        upload(client, sample_csv)
        client.post("/commit")
        time.sleep(0.1)
        second = client.get("/alerts/current").json()

        assert second["alert"]["alert_id"] == first["alert"]["alert_id"]
        assert second["pending"] == 0


class TestEmailEndpoints:
    """Test email draft generation."""

    def test_email_draft_for_red_student(self, client, sample_csv):
        upload(client, sample_csv)
        client.post("/commit")

        response = client.post("/email-draft", json={"identity": "102"})

        assert response.status_code == 200
        data = response.json()
        assert "Jane Smith" in data["subject"]
        assert "Outstanding fee payment" in data["body"]
        assert data["to"] == main.MENTOR_EMAIL

    def test_email_draft_unknown_student(self, client):
        response = client.post("/email-draft", json={"identity": "ghost"})
        assert response.status_code == 404

    def test_summary_draft(self, client, sample_csv):
        assert client.get("/summary-draft").json()["draft"] is None

        upload(client, sample_csv)
        client.post("/commit")
        draft = client.get("/summary-draft").json()["draft"]

        assert draft["subject"] == "Daily Risk Summary - 1 High Risk Students"
        assert "Jane Smith" in draft["body"]
