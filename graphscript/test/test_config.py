import logging

import pytest

from graphscript import TOOL_NAME, __version__
from graphscript.config import CompilerSettings


class TestCompilerSettings:

    def test_defaults(self):
        settings = CompilerSettings.from_env({})
        assert settings.tool_name == TOOL_NAME
        assert settings.tool_version == __version__
        assert not settings.include_timestamp
        assert not settings.install_guard
        assert settings.load_plugins
        assert settings.logging_level == logging.WARNING

    def test_from_env(self):
        settings = CompilerSettings.from_env({
            "GRAPHSCRIPT_TOOL_NAME": "pipeline-studio",
            "GRAPHSCRIPT_INCLUDE_TIMESTAMP": "yes",
            "GRAPHSCRIPT_INSTALL_GUARD": "1",
            "GRAPHSCRIPT_LOAD_PLUGINS": "off",
            "GRAPHSCRIPT_LOG_LEVEL": "debug",
        })
        assert settings.tool_name == "pipeline-studio"
        assert settings.include_timestamp
        assert settings.install_guard
        assert not settings.load_plugins
        assert settings.logging_level == logging.DEBUG

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("GRAPHSCRIPT_INSTALL_GUARD", "true")
        assert CompilerSettings.from_env().install_guard

    def test_bad_flag(self):
        with pytest.raises(ValueError, match="GRAPHSCRIPT_INSTALL_GUARD"):
            CompilerSettings.from_env({"GRAPHSCRIPT_INSTALL_GUARD": "sometimes"})

    def test_unknown_log_level_falls_back(self):
        assert CompilerSettings(log_level="CHATTY").logging_level == logging.WARNING

    def test_with_overrides_ignores_none(self):
        base = CompilerSettings(install_guard=True)
        updated = base.with_overrides(install_guard=None, include_timestamp=True)
        assert updated.install_guard
        assert updated.include_timestamp
        assert base.include_timestamp is False
