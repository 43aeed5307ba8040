import json
import sys
import types

import httpx
import pytest
from fastapi.testclient import TestClient

import bot.main as bot_main
from asr_service.diarizer import DiarizationAggregator
from bot.callback import CallbackDeliveryClient
from bot.platform import load_platform
from bot.session import BotSessionController
from common.config import BotSettings, CallbackSettings, TranscribeSettings
from common.schemas import SessionState


class IdlePlatform:
    def __init__(self, settings=None, join_error=None):
        self.settings = settings
        self.join_error = join_error

    def subscribe(self, events):
        self.events = events

    async def join_meeting(self, meeting_url):
        if self.join_error is not None:
            raise self.join_error

    async def leave_meeting(self):
        pass


class TestHealth:
    def test_health_reports_session_state(self):
        controller = BotSessionController(IdlePlatform(), None, DiarizationAggregator(), None)
        client = TestClient(bot_main.create_app(controller, "meeting-42"))

        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "meeting_id": "meeting-42", "state": "idle"}

        controller.state = SessionState.active
        assert client.get("/health").json()["state"] == "active"

    def test_unknown_path_is_404(self):
        controller = BotSessionController(IdlePlatform(), None, DiarizationAggregator(), None)
        client = TestClient(bot_main.create_app(controller, "m"))
        assert client.get("/nope").status_code == 404


class TestSettings:
    def test_env_prefixes(self, monkeypatch):
        monkeypatch.setenv("BOT_MEETING_ID", "m-9")
        monkeypatch.setenv("BOT_MAX_RUNTIME_S", "60")
        monkeypatch.setenv("ASR_LANGUAGE_CODE", "de-DE")
        monkeypatch.setenv("CALLBACK_SECRET", "shh")

        assert BotSettings().meeting_id == "m-9"
        assert BotSettings().max_runtime_s == 60
        assert TranscribeSettings().language_code == "de-DE"
        assert CallbackSettings().secret == "shh"

    def test_defaults(self):
        assert BotSettings().max_runtime_s == 14400
        assert BotSettings().runtime_warning_s == 900
        assert TranscribeSettings().min_confidence == 0.7
        assert CallbackSettings().max_attempts == 3

    def test_missing_settings_listed(self):
        bot = BotSettings(meeting_url="https://meet.google.com/abc-defg-hij", meeting_id="", user_id="u")
        assert bot_main.missing_settings(bot, CallbackSettings(url="")) == ["BOT_MEETING_ID", "CALLBACK_URL"]

    def test_main_exits_when_required_settings_missing(self, monkeypatch):
        for name in ("BOT_MEETING_URL", "BOT_MEETING_ID", "BOT_USER_ID", "CALLBACK_URL"):
            monkeypatch.delenv(name, raising=False)
        with pytest.raises(SystemExit) as exc_info:
            bot_main.main()
        assert exc_info.value.code == 1


class TestLoadPlatform:
    def test_loads_factory(self, monkeypatch):
        module = types.ModuleType("fake_meet_adapter")
        module.build = lambda settings: IdlePlatform(settings)
        monkeypatch.setitem(sys.modules, "fake_meet_adapter", module)

        settings = BotSettings(bot_name="Recorder")
        platform = load_platform("fake_meet_adapter:build", settings)
        assert isinstance(platform, IdlePlatform)
        assert platform.settings.bot_name == "Recorder"

    def test_rejects_malformed_path(self):
        with pytest.raises(ValueError, match="module:factory"):
            load_platform("no_colon_here", BotSettings())


class TestRunBot:
    @pytest.mark.asyncio
    async def test_join_failure_reports_and_returns_exit_code(self, monkeypatch):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        class MockedCallbackClient(CallbackDeliveryClient):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, transport=httpx.MockTransport(handler), **kwargs)

        monkeypatch.setattr(bot_main, "CallbackDeliveryClient", MockedCallbackClient)
        settings = BotSettings(meeting_url="https://zoom.us/j/1", meeting_id="m-1", user_id="u-1")

        code = await bot_main.run_bot(
            IdlePlatform(join_error=RuntimeError("Invalid Zoom meeting URL")),
            settings,
            callback_settings=CallbackSettings(url="https://example.test/cb", secret="k"),
            serve_health=False,
        )

        assert code == 1
        [request] = requests
        assert json.loads(request.content) == {
            "meeting_id": "m-1",
            "user_id": "u-1",
            "status": "failed",
            "error_message": "Invalid Zoom meeting URL",
        }
