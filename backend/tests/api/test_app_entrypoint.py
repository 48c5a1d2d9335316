import importlib
import logging

import backend.app.main as main_module


def test_importing_the_app_leaves_logging_alone(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
    importlib.reload(main_module)
    assert calls == []


def test_main_configures_logging_then_serves(monkeypatch) -> None:
    calls, served = [], []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
    monkeypatch.setattr(main_module.uvicorn, "run", lambda app, **kwargs: served.append((app, kwargs)))
    monkeypatch.setenv("PORT", "9100")

    main_module.main()

    assert len(calls) == 1
    assert served[0][0] is main_module.app
    assert served[0][1]["port"] == 9100
