"""
Tests for the FastAPI backend with mocked Quran text and grading services.
"""

import io
import sys
import time
import unittest
import wave
from pathlib import Path
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

# Add the src directory to the Python path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from quran_hifz import fastapi_server as server
from quran_hifz.api_clients import Ayah, Surah
from quran_hifz.db import get_engine, get_session_factory
from quran_hifz.exceptions import QuranDataError
from quran_hifz.grading import GradingFailed, GradingOk
from quran_hifz.notifications import NotificationStore
from quran_hifz.verdict import WordVerdict

IKHLAS_SURAH = Surah(
    number=112, name="سُورَةُ الإِخۡلَاصِ", english_name="Al-Ikhlaas",
    english_name_translation="Sincerity", number_of_ayahs=4, revelation_type="Meccan",
)
IKHLAS = [
    Ayah(number=6222, text="قُلْ هُوَ ٱللَّهُ أَحَدٌ", number_in_surah=1),
    Ayah(number=6223, text="ٱللَّهُ ٱلصَّمَدُ", number_in_surah=2),
    Ayah(number=6224, text="لَمْ يَلِدْ وَلَمْ يُولَدْ", number_in_surah=3),
    Ayah(number=6225, text="وَلَمْ يَكُن لَّهُۥ كُفُوًا أَحَدٌۢ", number_in_surah=4),
]


def make_wav(seconds=0.1, rate=16000):
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(rate)
        wav_file.writeframes(bytes(int(seconds * rate) * 2))
    return buffer.getvalue()


def all_correct(ayah):
    return GradingOk([WordVerdict(word=word, status="correct") for word in ayah.text.split()])


class ServerTestCase(unittest.TestCase):
    def setUp(self):
        server.SessionLocal = get_session_factory(get_engine("sqlite://"))
        server.quran_client = MagicMock()
        server.quran_client.fetch_surah_list.return_value = [IKHLAS_SURAH]
        server.quran_client.fetch_surah_details.return_value = IKHLAS
        server.grader = MagicMock()
        server.grader.api_key = "test-key"
        server.auto_advance_delay = 0
        server.session_idle_ttl = 3600
        server.max_hifz_sessions = 100
        server.notifications = NotificationStore()
        server.hifz_sessions.clear()
        self.client = TestClient(server.app)

    def register(self, email="student@example.com", **extra):
        body = {"name": "Amina", "email": email, "password": "secret-pw"}
        body.update(extra)
        response = self.client.post("/api/auth/register", json=body)
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def auth(self, token):
        return {"Authorization": f"Bearer {token}"}

    def start(self, range_start=1, range_end=4, headers=None):
        response = self.client.post(
            "/api/hifz/sessions",
            json={"surah_number": 112, "range_start": range_start, "range_end": range_end},
            headers=headers or {},
        )
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def recite(self, session_id, data=None, content_type="audio/wav"):
        return self.client.post(
            f"/api/hifz/sessions/{session_id}/recitation",
            files={"audio_file": ("recitation.wav", make_wav() if data is None else data, content_type)},
        )


class TestHealthAndStartup(ServerTestCase):
    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "healthy")
        self.assertTrue(body["grading_enabled"])

    def test_startup_keeps_configured_services(self):
        client = server.quran_client
        with TestClient(server.app) as test_client:
            self.assertEqual(test_client.get("/health").status_code, 200)
        self.assertIs(server.quran_client, client)


class TestAuth(ServerTestCase):
    def test_register_login_me(self):
        registered = self.register(email="Amina@Example.com")
        self.assertEqual(registered["user"]["email"], "amina@example.com")
        self.assertEqual(registered["user"]["role"], "student")

        response = self.client.post("/api/auth/login", json={"email": "amina@example.com", "password": "secret-pw"})
        self.assertEqual(response.status_code, 200)
        token = response.json()["token"]

        me = self.client.get("/api/auth/me", headers=self.auth(token))
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["uid"], registered["user"]["uid"])

    def test_duplicate_registration(self):
        self.register()
        response = self.client.post(
            "/api/auth/register",
            json={"name": "Other", "email": "student@example.com", "password": "another-pw"},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "User already exists")

    def test_invalid_credentials(self):
        self.register()
        for body in [
            {"email": "student@example.com", "password": "wrong-pw"},
            {"email": "nobody@example.com", "password": "secret-pw"},
        ]:
            response = self.client.post("/api/auth/login", json=body)
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.json()["detail"], "Invalid credentials")

    def test_missing_or_bad_token(self):
        self.assertEqual(self.client.get("/api/auth/me").status_code, 401)
        response = self.client.get("/api/auth/me", headers=self.auth("garbage"))
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["detail"], "Token is not valid")

    def test_profile_update(self):
        token = self.register()["token"]
        response = self.client.put(
            "/api/users/profile",
            json={"display_name": "Amina K.", "role": "teacher", "bio": "Hafiza"},
            headers=self.auth(token),
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["display_name"], "Amina K.")
        self.assertEqual(body["role"], "teacher")
        self.assertEqual(body["email"], "student@example.com")

    def test_teachers(self):
        self.register()
        self.register(email="teacher@example.com", role="teacher", hourly_rate=15, subjects=["Tajweed"])
        teachers = self.client.get("/api/teachers").json()
        self.assertEqual(len(teachers), 1)
        self.assertEqual(teachers[0]["subjects"], ["Tajweed"])
        self.assertEqual(teachers[0]["rating"], 5.0)


class TestQuranText(ServerTestCase):
    def test_surah_list(self):
        surahs = self.client.get("/api/quran/surahs").json()
        self.assertEqual(surahs[0]["english_name"], "Al-Ikhlaas")

    def test_surah_details(self):
        ayahs = self.client.get("/api/quran/surahs/112").json()
        self.assertEqual(len(ayahs), 4)
        self.assertEqual(ayahs[0]["text"], IKHLAS[0].text)

    def test_surah_out_of_range(self):
        self.assertEqual(self.client.get("/api/quran/surahs/115").status_code, 404)

    def test_upstream_failure(self):
        server.quran_client.fetch_surah_list.side_effect = QuranDataError("unreachable")
        self.assertEqual(self.client.get("/api/quran/surahs").status_code, 502)


class TestHifzSession(ServerTestCase):
    def test_start_hides_words(self):
        body = self.start()
        self.assertEqual(body["state"], "active")
        self.assertEqual(body["surah_number"], 112)
        self.assertEqual(body["total_ayahs"], 4)
        self.assertEqual(body["current"]["word_count"], 4)
        self.assertTrue(all(w["text"] is None for w in body["current"]["words"]))
        self.assertTrue(all(w["status"] == "hidden" for w in body["current"]["words"]))

    def test_invalid_range(self):
        response = self.client.post("/api/hifz/sessions", json={"surah_number": 112, "range_start": 3, "range_end": 1})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(server.hifz_sessions, {})

    def test_transcript_reveals_words(self):
        session_id = self.start()["session_id"]
        response = self.client.post(f"/api/hifz/sessions/{session_id}/transcript", json={"transcript": "قل هو"})
        body = response.json()
        self.assertEqual(body["revealed"], [0, 1])
        words = body["session"]["current"]["words"]
        self.assertEqual(words[0], {"index": 0, "status": "revealed", "text": "قُلْ"})
        self.assertIsNone(words[2]["text"])

    def test_navigation_and_reveal(self):
        session_id = self.start()["session_id"]
        body = self.client.post(f"/api/hifz/sessions/{session_id}/previous").json()
        self.assertEqual(body["current_index"], 0)

        body = self.client.post(f"/api/hifz/sessions/{session_id}/next").json()
        self.assertEqual(body["current_index"], 1)

        body = self.client.post(f"/api/hifz/sessions/{session_id}/reveal").json()
        self.assertEqual([w["status"] for w in body["current"]["words"]], ["revealed", "revealed"])
        self.assertFalse(body["current"]["complete"])

    def test_correct_recitation_advances(self):
        session_id = self.start()["session_id"]
        server.grader.grade.return_value = all_correct(IKHLAS[0])

        response = self.recite(session_id)
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertTrue(body["applied"])
        self.assertEqual(body["outcome"], "ok")
        self.assertTrue(body["completed"])
        self.assertEqual(body["session"]["current_index"], 1)
        self.assertTrue(body["session"]["ayahs"][0]["complete"])

        args, kwargs = server.grader.grade.call_args
        self.assertEqual(args[0], IKHLAS[0].text)
        self.assertEqual(args[1].mime_type, "audio/wav")
        self.assertEqual(kwargs["ayah_number"], 1)
        self.assertEqual(kwargs["surah_name"], "Al-Ikhlaas")

    def test_wrong_word(self):
        session_id = self.start()["session_id"]
        server.grader.grade.return_value = GradingOk([
            WordVerdict(word="قُلْ", status="correct"),
            WordVerdict(word="هُوَ", status="wrong"),
            WordVerdict(word="ٱللَّهُ", status="correct"),
            WordVerdict(word="أَحَدٌ", status="correct"),
        ])
        body = self.recite(session_id).json()
        self.assertFalse(body["completed"])
        self.assertEqual(body["wrong_words"], [1])
        self.assertEqual(body["session"]["current_index"], 0)
        self.assertTrue(body["session"]["ayahs"][0]["has_mistakes"])

    def test_failed_grading_reveals_ayah(self):
        session_id = self.start()["session_id"]
        server.grader.grade.return_value = GradingFailed("API Key not found")
        response = self.recite(session_id)
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["outcome"], "failed")
        self.assertEqual([w["status"] for w in body["session"]["current"]["words"]], ["revealed"] * 4)
        self.assertEqual(body["session"]["current_index"], 0)

    def test_unusable_recordings(self):
        session_id = self.start()["session_id"]
        self.assertEqual(self.recite(session_id, data=b"text", content_type="text/plain").status_code, 400)

        response = self.recite(session_id, data=b"")
        self.assertEqual(response.status_code, 400)
        self.assertIn("Microphone access needed.", response.json()["detail"])
        server.grader.grade.assert_not_called()

    def test_end_and_summary(self):
        session_id = self.start(1, 2)["session_id"]
        self.client.post(f"/api/hifz/sessions/{session_id}/transcript", json={"transcript": "قل"})
        body = self.client.post(f"/api/hifz/sessions/{session_id}/end").json()
        self.assertEqual(body["state"], "summary")
        self.assertIsNone(body["current"])
        self.assertEqual(body["summary"]["revealed_words"], 1)
        self.assertEqual(body["summary"]["hidden_words"], 5)

        self.assertEqual(self.recite(session_id).status_code, 409)

    def test_reset_and_restart(self):
        session_id = self.start()["session_id"]
        body = self.client.post(f"/api/hifz/sessions/{session_id}/reset").json()
        self.assertEqual(body["state"], "setup")
        self.assertEqual(body["total_ayahs"], 0)
        self.assertEqual(self.client.post(f"/api/hifz/sessions/{session_id}/end").status_code, 409)

        response = self.client.post(
            f"/api/hifz/sessions/{session_id}/start",
            json={"surah_number": 112, "range_start": 2, "range_end": 3},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total_ayahs"], 2)

        again = self.client.post(f"/api/hifz/sessions/{session_id}/start", json={"surah_number": 112})
        self.assertEqual(again.status_code, 409)

    def test_unknown_and_deleted_sessions(self):
        self.assertEqual(self.client.get("/api/hifz/sessions/missing").status_code, 404)
        session_id = self.start()["session_id"]
        self.assertEqual(self.client.delete(f"/api/hifz/sessions/{session_id}").status_code, 200)
        self.assertEqual(self.client.post(f"/api/hifz/sessions/{session_id}/next").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/hifz/sessions/{session_id}").status_code, 404)


class TestSessionEviction(ServerTestCase):
    def test_idle_session_is_evicted(self):
        session_id = self.start()["session_id"]
        entry = server.hifz_sessions[session_id]
        entry.last_used = time.monotonic() - 7200

        self.assertEqual(self.client.get(f"/api/hifz/sessions/{session_id}").status_code, 404)
        self.assertNotIn(session_id, server.hifz_sessions)
        self.assertEqual(entry.session.state.value, "setup")

    def test_session_cap_drops_least_recently_used(self):
        server.max_hifz_sessions = 2
        first = self.start()["session_id"]
        second = self.start()["session_id"]
        server.hifz_sessions[first].last_used -= 10
        server.hifz_sessions[second].last_used -= 5

        # Touching the older session keeps it over the untouched one
        self.assertEqual(self.client.get(f"/api/hifz/sessions/{first}").status_code, 200)
        third = self.start()["session_id"]

        self.assertEqual(set(server.hifz_sessions), {first, third})
        self.assertEqual(self.client.get(f"/api/hifz/sessions/{second}").status_code, 404)

    def test_active_sessions_are_kept(self):
        session_ids = [self.start()["session_id"] for _ in range(3)]
        for session_id in session_ids:
            self.assertEqual(self.client.get(f"/api/hifz/sessions/{session_id}").status_code, 200)
        self.assertEqual(len(server.hifz_sessions), 3)


class TestCompletionCredit(ServerTestCase):
    def test_finished_session_credits_user_and_notifies(self):
        token = self.register()["token"]
        session_id = self.start(1, 1, headers=self.auth(token))["session_id"]
        server.grader.grade.return_value = all_correct(IKHLAS[0])

        body = self.recite(session_id).json()
        self.assertEqual(body["session"]["state"], "summary")
        self.assertEqual(body["session"]["summary"]["completed_ayahs"], 1)

        me = self.client.get("/api/auth/me", headers=self.auth(token)).json()
        self.assertEqual(me["memorized_ayahs"], 1)

        # Credited only once
        self.client.get(f"/api/hifz/sessions/{session_id}")
        self.client.post(f"/api/hifz/sessions/{session_id}/end")
        me = self.client.get("/api/auth/me", headers=self.auth(token)).json()
        self.assertEqual(me["memorized_ayahs"], 1)

        listing = self.client.get("/api/notifications", headers=self.auth(token)).json()
        self.assertEqual(listing["unread_count"], 1)
        note = listing["notifications"][0]
        self.assertEqual(note["title"], "Hifz Goal Achieved")
        self.assertEqual(note["type"], "success")
        self.assertIn("Al-Ikhlaas", note["message"])

        read = self.client.post(f"/api/notifications/{note['id']}/read", headers=self.auth(token)).json()
        self.assertEqual(read["unread_count"], 0)

    def test_anonymous_session_is_not_credited(self):
        session_id = self.start(1, 1)["session_id"]
        server.grader.grade.return_value = all_correct(IKHLAS[0])
        body = self.recite(session_id).json()
        self.assertEqual(body["session"]["state"], "summary")

    def test_notification_endpoints(self):
        token = self.register()["token"]
        user_id = self.client.get("/api/auth/me", headers=self.auth(token)).json()["uid"]
        server.notifications.add(user_id, "Reminder", "Time to revise", type="reminder")
        server.notifications.add(user_id, "Welcome", "Salaam")

        missing = self.client.post("/api/notifications/nope/read", headers=self.auth(token))
        self.assertEqual(missing.status_code, 404)

        body = self.client.post("/api/notifications/read-all", headers=self.auth(token)).json()
        self.assertEqual(body["unread_count"], 0)
        self.assertEqual([n["title"] for n in body["notifications"]], ["Welcome", "Reminder"])

        self.assertEqual(self.client.get("/api/notifications").status_code, 401)


if __name__ == "__main__":
    unittest.main()
