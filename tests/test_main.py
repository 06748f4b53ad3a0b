from __future__ import annotations

import pytest

from alphadesk.config import Settings
from alphadesk.main import _build_parser, _collaborators, _load_factory
from alphadesk.notify import CooldownNotifier
from alphadesk.providers.mock import MockJudge, build_mock_collaborators


def test_parser_flags() -> None:
    args = _build_parser().parse_args(["--mock", "--once", "--close", "btc/usd"])
    assert args.mock is True
    assert args.once is True
    assert args.close == "btc/usd"
    assert args.status is False


def test_load_factory_requires_module_and_attr() -> None:
    with pytest.raises(SystemExit):
        _load_factory("not_a_factory_path")
    factory = _load_factory("alphadesk.providers.mock:build_mock_collaborators")
    assert factory is build_mock_collaborators


def test_mock_collaborators_get_cooldown_notifier() -> None:
    collab = _collaborators(Settings(_env_file=None), mock=True)
    assert isinstance(collab.judge, MockJudge)
    assert isinstance(collab.notifier, CooldownNotifier)


def test_missing_factory_exits() -> None:
    with pytest.raises(SystemExit):
        _collaborators(Settings(_env_file=None, provider_factory=""), mock=False)
