"""Tests for TokenContext, build_context and open_context."""

import pytest as _pytest

import pkcs11test.config as config
import pkcs11test.constants as constants
import pkcs11test.context as context
import pkcs11test.status as status
import tests.conftest as conftest

ALL_PRESETS = sorted(context.PRESETS)

# Presets that log in whatever the token flags say
MANDATORY_LOGIN_PRESETS = ["ro_user_session", "rw_user_session", "rw_so_session"]


class TestContextSpec:
    """Tests for ContextSpec and the presets."""

    def test_named_lookup(self) -> None:
        assert context.ContextSpec.named("rw_so_session") is context.RW_SO_SESSION
        assert context.ContextSpec.named("RO_SESSION") is context.READ_ONLY_SESSION

    def test_unknown_name(self) -> None:
        with _pytest.raises(KeyError, match="Unknown context preset"):
            context.ContextSpec.named("admin_session")

    def test_login_without_session_rejected(self) -> None:
        with _pytest.raises(ValueError):
            context.ContextSpec(login_policy=context.LoginPolicy.ALWAYS)

    def test_role_selected_presets(self) -> None:
        assert context.RO_USER_SESSION.access_mode is context.AccessMode.READ_ONLY
        assert context.RW_USER_SESSION.user_type is context.UserType.USER
        assert context.RW_SO_SESSION.user_type is context.UserType.SO
        for spec in (context.RO_USER_SESSION, context.RW_USER_SESSION, context.RW_SO_SESSION):
            assert spec.login_policy is context.LoginPolicy.ALWAYS


class TestBuildContext:
    """Tests for guard assembly."""

    def test_library_only(
        self,
        fake_token: conftest.FakeToken,
        harness_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        ctx = context.build_context(context.LIBRARY, fake_token, harness_settings, recorder)
        assert ctx.session is None
        assert ctx.login is None
        assert ctx.session_handle == constants.INVALID_SESSION_HANDLE
        assert fake_token.calls == []

    def test_session_without_login(
        self,
        fake_token: conftest.FakeToken,
        harness_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        ctx = context.build_context(
            context.READ_WRITE_SESSION, fake_token, harness_settings, recorder
        )
        assert ctx.session is not None
        assert ctx.login is None

    def test_full_stack(
        self,
        fake_token: conftest.FakeToken,
        harness_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        ctx = context.build_context(context.RW_SO_SESSION, fake_token, harness_settings, recorder)
        assert [type(g).__name__ for g in ctx.guards] == ["LibraryGuard", "SessionGuard", "LoginGuard"]


class TestLifecycle:
    """Tests for acquire/release ordering."""

    def test_library_context_scenario(
        self,
        fake_token: conftest.FakeToken,
        harness_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        with context.open_context(context.LIBRARY, fake_token, harness_settings, recorder):
            pass
        assert fake_token.names == ["initialize", "finalize"]
        assert recorder.passed

    def test_role_selected_full_trace(
        self,
        fake_token: conftest.FakeToken,
        harness_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        with context.open_context(
            context.RW_USER_SESSION, fake_token, harness_settings, recorder
        ) as ctx:
            assert ctx.session_handle == 1
            fake_token.calls.append(("test_body", ()))

        assert fake_token.names == [
            "initialize",
            "get_slot_info",
            "open_session",
            "login",
            "test_body",
            "logout",
            "close_session",
            "finalize",
        ]
        assert recorder.passed

    @_pytest.mark.parametrize("preset", ALL_PRESETS)
    @_pytest.mark.parametrize("login_fails", [False, True])
    @_pytest.mark.parametrize("flags_fixture", ["harness_settings", "login_required_settings"])
    def test_ordering_and_balance(
        self,
        preset: str,
        login_fails: bool,
        flags_fixture: str,
        fake_token: conftest.FakeToken,
        recorder: status.Expectations,
        request: _pytest.FixtureRequest,
    ) -> None:
        """Finalize after close, close after logout; logins balance logouts."""
        settings: config.HarnessSettings = request.getfixturevalue(flags_fixture)
        if login_fails:
            fake_token.results["login"] = constants.CKR_PIN_INCORRECT
        spec = context.ContextSpec.named(preset)

        with context.open_context(spec, fake_token, settings, recorder):
            pass

        names = fake_token.names
        assert names.count("initialize") == 1
        assert names.count("finalize") == 1
        assert names[-1] == "finalize"
        assert names.count("login") == names.count("logout")
        if "close_session" in names:
            assert names.index("close_session") < names.index("finalize")
        if "logout" in names:
            assert names.index("logout") < names.index("close_session")

        expected_logins = 1 if spec.login_policy.applies(settings.token_flags) else 0
        assert names.count("login") == expected_logins

    @_pytest.mark.parametrize("preset", MANDATORY_LOGIN_PRESETS)
    def test_mandatory_login_scenario(
        self,
        preset: str,
        fake_token: conftest.FakeToken,
        harness_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        with context.open_context(preset, fake_token, harness_settings, recorder):
            pass
        assert fake_token.count("login") == 1
        assert fake_token.count("logout") == 1
        assert recorder.passed

    @_pytest.mark.parametrize("preset", MANDATORY_LOGIN_PRESETS)
    def test_mandatory_login_failure_recorded(
        self,
        preset: str,
        fake_token: conftest.FakeToken,
        harness_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        fake_token.results["login"] = constants.CKR_PIN_INCORRECT

        with context.open_context(preset, fake_token, harness_settings, recorder):
            pass

        assert [f.operation for f in recorder.failures] == ["C_Login"]
        assert fake_token.count("logout") == 1
        assert fake_token.names[-2:] == ["close_session", "finalize"]

    @_pytest.mark.parametrize("preset", ["ro_either_session", "rw_either_session"])
    def test_conditional_login_failure_not_recorded(
        self,
        preset: str,
        fake_token: conftest.FakeToken,
        login_required_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        fake_token.results["login"] = constants.CKR_PIN_INCORRECT

        with context.open_context(preset, fake_token, login_required_settings, recorder):
            pass

        assert fake_token.count("login") == 1
        assert fake_token.count("logout") == 1
        assert recorder.passed

    @_pytest.mark.parametrize("preset", ["ro_either_session", "rw_either_session"])
    def test_conditional_login_skipped_scenario(
        self,
        preset: str,
        fake_token: conftest.FakeToken,
        harness_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        """No CKF_LOGIN_REQUIRED: no login or logout, session handled normally."""
        with context.open_context(preset, fake_token, harness_settings, recorder):
            pass
        assert fake_token.names == [
            "initialize",
            "get_slot_info",
            "open_session",
            "close_session",
            "finalize",
        ]

    def test_failed_open_scenario(
        self,
        fake_token: conftest.FakeToken,
        harness_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        fake_token.results["open_session"] = constants.CKR_TOKEN_NOT_PRESENT

        with context.open_context(
            context.RW_USER_SESSION, fake_token, harness_settings, recorder
        ) as ctx:
            assert ctx.session_handle == constants.INVALID_SESSION_HANDLE

        assert fake_token.count("close_session") == 0
        assert fake_token.count("login") == 0
        assert fake_token.count("logout") == 0
        assert fake_token.names[-1] == "finalize"
        assert [f.operation for f in recorder.failures] == ["C_OpenSession"]

    def test_failed_initialize_cascades_but_cleans_up(
        self,
        fake_token: conftest.FakeToken,
        harness_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        fake_token.results["initialize"] = constants.CKR_GENERAL_ERROR
        fake_token.results["open_session"] = constants.CKR_CRYPTOKI_NOT_INITIALIZED

        with context.open_context("rw_session", fake_token, harness_settings, recorder):
            pass

        assert fake_token.count("finalize") == 1
        assert [f.operation for f in recorder.failures] == ["C_Initialize", "C_OpenSession"]

    def test_release_returns_aggregated_failures(
        self,
        fake_token: conftest.FakeToken,
        harness_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        fake_token.results["logout"] = constants.CKR_USER_NOT_LOGGED_IN
        fake_token.results["close_session"] = constants.CKR_SESSION_CLOSED
        fake_token.results["finalize"] = constants.CKR_GENERAL_ERROR

        ctx = context.build_context(context.RW_SO_SESSION, fake_token, harness_settings, recorder)
        ctx.acquire()
        failures = ctx.release()

        assert [f.operation for f in failures] == ["C_Logout", "C_CloseSession", "C_Finalize"]

    def test_acquire_twice_rejected(
        self,
        fake_token: conftest.FakeToken,
        harness_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        ctx = context.build_context(context.LIBRARY, fake_token, harness_settings, recorder)
        ctx.acquire()
        with _pytest.raises(context.ContextStateError):
            ctx.acquire()


class TestExceptions:
    """Tests for collaborators that raise instead of returning a status."""

    def test_raise_during_setup_releases_outer_layers(
        self,
        fake_token: conftest.FakeToken,
        harness_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        fake_token.raise_on["open_session"] = RuntimeError("binding crashed")

        with _pytest.raises(RuntimeError, match="binding crashed"):
            with context.open_context(
                context.RW_USER_SESSION, fake_token, harness_settings, recorder
            ):
                _pytest.fail("body must not run")

        assert fake_token.names == ["initialize", "get_slot_info", "open_session", "finalize"]

    def test_raise_during_initialize_still_finalizes(
        self,
        fake_token: conftest.FakeToken,
        harness_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        fake_token.raise_on["initialize"] = OSError("cannot load module")

        with _pytest.raises(OSError):
            with context.open_context(context.LIBRARY, fake_token, harness_settings, recorder):
                pass

        assert fake_token.names == ["initialize", "finalize"]

    def test_raise_during_release_still_runs_outer_releases(
        self,
        fake_token: conftest.FakeToken,
        harness_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        fake_token.raise_on["logout"] = RuntimeError("logout crashed")

        with _pytest.raises(RuntimeError, match="logout crashed"):
            with context.open_context(
                context.RW_USER_SESSION, fake_token, harness_settings, recorder
            ):
                pass

        assert fake_token.names[-3:] == ["logout", "close_session", "finalize"]

    def test_body_exception_still_releases(
        self,
        fake_token: conftest.FakeToken,
        harness_settings: config.HarnessSettings,
        recorder: status.Expectations,
    ) -> None:
        with _pytest.raises(ValueError):
            with context.open_context(
                context.RW_SO_SESSION, fake_token, harness_settings, recorder
            ):
                raise ValueError("test body failed")

        assert fake_token.names[-3:] == ["logout", "close_session", "finalize"]
