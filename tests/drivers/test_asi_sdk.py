"""Unit tests for ASI SDK library path resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from camera_gateway.drivers import asi_sdk
from camera_gateway.drivers.asi_sdk import SDK_ENV_VAR, get_sdk_library_path


class TestASISDKPaths:
    """Override, then environment, then bundled library."""

    def test_override_wins(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """An explicit path beats the environment variable.

        Arrangement:
        Two existing files, one passed explicitly and one in ZWO_ASI_LIB.

        Action:
        get_sdk_library_path(override).

        Assertion Strategy:
        The override's resolved path is returned.
        """
        explicit = tmp_path / "explicit.so"
        explicit.write_bytes(b"")
        from_env = tmp_path / "env.so"
        from_env.write_bytes(b"")
        monkeypatch.setenv(SDK_ENV_VAR, str(from_env))

        assert get_sdk_library_path(explicit) == str(explicit.resolve())

    def test_environment_variable(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        library = tmp_path / "libASICamera2.so"
        library.write_bytes(b"")
        monkeypatch.setenv(SDK_ENV_VAR, str(library))

        assert get_sdk_library_path() == str(library.resolve())

    def test_configured_path_must_exist(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv(SDK_ENV_VAR, raising=False)
        with pytest.raises(RuntimeError, match="not found"):
            get_sdk_library_path(tmp_path / "nope.so")

    def test_unsupported_architecture(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(SDK_ENV_VAR, raising=False)
        monkeypatch.setattr(asi_sdk.platform, "machine", lambda: "sparc64")
        with pytest.raises(RuntimeError, match="Unsupported architecture"):
            get_sdk_library_path()

    def test_missing_bundled_library(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(SDK_ENV_VAR, raising=False)
        monkeypatch.setattr(asi_sdk.platform, "machine", lambda: "x86_64")
        bundled = Path(asi_sdk.__file__).parent / "x64"
        if bundled.exists():
            pytest.skip("bundled SDK present")
        with pytest.raises(RuntimeError, match=SDK_ENV_VAR):
            get_sdk_library_path()
