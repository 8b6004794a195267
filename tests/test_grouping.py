from concurrent.futures import ThreadPoolExecutor

import pytest
from sentry_grouping import (
    AlgorithmVersion,
    ConfigError,
    Event,
    Frame,
    GroupingError,
    GroupingConfig,
    InsufficientData,
    ParseError,
    RulesetRegistry,
    assemble,
    get_grouping_key,
    hash_from_values,
)
from sentry_grouping.event import ExceptionInterface, Message, Stacktrace
from sentry_grouping.strategies import compute, get_grouping_frames


def create_event(frames=(), **kwargs) -> Event:
    return Event(stacktrace=Stacktrace(frames=tuple(frames)) if frames else None, **kwargs)


@pytest.fixture
def registry(read_fixture):
    registry = RulesetRegistry()
    registry.compile_enhancements("project-1", read_fixture("enhancements.txt"))
    registry.compile_fingerprinting("project-1", read_fixture("fingerprinting.txt"))
    return registry


def test_stacktrace_uses_in_app_frames():
    frames = [
        Frame(module="lib", filename="lib.py", context_line="x()", in_app=False),
        Frame(module="app", filename="app.py", context_line="y()", in_app=True),
    ]
    assert compute(create_event(frames)) == ["app|app.py|y()"]

    # non in-app frames do not contribute
    frames[0] = Frame(module="lib", filename="other.py", context_line="z()", in_app=False)
    assert compute(create_event(frames)) == ["app|app.py|y()"]


@pytest.mark.parametrize("in_app", [False, None])
def test_stacktrace_without_in_app_frames(in_app):
    frames = [
        Frame(module="a", filename="a.py", context_line="a()", in_app=in_app),
        Frame(module="b", filename="b.py", context_line="b()", in_app=in_app),
    ]
    assert compute(create_event(frames)) == ["a|a.py|a()", "b|b.py|b()"]


def test_grouping_frames():
    frames = [Frame(function=str(i), in_app=True) for i in range(5)]
    frames[3] = Frame(function="3", in_app=True, include_in_grouping=False)

    assert [f.function for f in get_grouping_frames(frames)] == ["0", "1", "2", "4"]
    assert [f.function for f in get_grouping_frames(frames, max_frames=2)] == ["2", "4"]


def test_excluded_frames_fall_through():
    frames = [Frame(module="a", include_in_grouping=False)]
    event = create_event(frames, exception=ExceptionInterface(type="ValueError", value="bad"))
    assert compute(event) == ["ValueError", "bad"]


@pytest.mark.parametrize(
    "event, expected",
    [
        (Event(exception=ExceptionInterface(type="ValueError", value="bad")), ["ValueError", "bad"]),
        (Event(message=Message(formatted="User 42 not found", raw="User %s not found")), ["User %s not found"]),
        (Event(message=Message(formatted="User 42 not found")), ["User 42 not found"]),
        (Event(exception=ExceptionInterface(type="ValueError")), ["ValueError"]),
        (
            Event(
                exception=ExceptionInterface(type="ValueError"),
                message=Message(formatted="it broke"),
            ),
            ["it broke"],
        ),
    ],
)
def test_default_priority(event, expected):
    assert compute(event) == expected


def test_insufficient_data():
    with pytest.raises(InsufficientData):
        compute(Event())


def test_algorithm_versions():
    event = create_event([Frame(module="m", filename="f.py", function="fn")])
    assert compute(event, version=AlgorithmVersion.NEWSTYLE) == ["m|f.py|fn"]
    assert compute(event, version=AlgorithmVersion.LEGACY) == ["m|f.py|"]


def test_default_key_ignores_function():
    first = create_event([Frame(module="m", filename="f.py", function="a")])
    second = create_event([Frame(module="m", filename="f.py", function="b")])

    assert compute(first) == compute(second) == ["m|f.py|"]
    assert get_grouping_key(first).hash == get_grouping_key(second).hash
    assert GroupingConfig().algorithm_version is AlgorithmVersion.LEGACY


def test_assemble():
    default = ["GET", "/api/x", "500"]

    key = assemble(["{{ default }}", "/api/x"], default, None)
    assert key.values == ("GET", "/api/x", "500", "/api/x")
    assert key.source == "client"

    assert assemble(["custom", "{{default}}"], default, ["rule"]).values == ("custom", "GET", "/api/x", "500")
    assert assemble(["custom", 42], default, ["rule"]).values == ("custom", "42")
    assert assemble(None, default, ["rule"]).values == ("rule",)
    assert assemble([], default, ["rule", "{{ default }}"]).values == ("rule", "GET", "/api/x", "500")
    assert assemble(None, default, None).values == ("GET", "/api/x", "500")
    assert assemble(None, default, None).source == "default"


def test_hash_is_order_sensitive():
    assert hash_from_values(["a", "b"]) == hash_from_values(("a", "b"))
    assert hash_from_values(["a", "b"]) != hash_from_values(["b", "a"])
    assert hash_from_values(["ab", "c"]) != hash_from_values(["a", "bc"])
    assert len(hash_from_values(["a"])) == 32


def test_fingerprinting_override(registry):
    event = create_event(
        [Frame(module="myapp.views", filename="views.py", context_line="db.connect()", in_app=True)],
        exception=ExceptionInterface(type="DatabaseUnavailable", value="down"),
    )
    config = GroupingConfig(enhancements_id="project-1", fingerprinting_id="project-1")

    result = get_grouping_key(event, config, registry)
    assert result.key.values == ("system-down",)
    assert result.key.source == "rule"
    assert result.default_key is None


def test_client_fingerprint_wins(registry):
    event = create_event(
        exception=ExceptionInterface(type="DatabaseUnavailable", value="down"),
        fingerprint=("{{ default }}", "db"),
    )
    config = GroupingConfig(fingerprinting_id="project-1")

    result = get_grouping_key(event, config, registry)
    assert result.key.values == ("DatabaseUnavailable", "down", "db")
    assert result.fingerprint_match.fingerprint == ("system-down",)


def test_client_fingerprint_without_data():
    result = get_grouping_key(Event(fingerprint=("custom",)))
    assert result.key.values == ("custom",)
    assert result.default_key is None

    with pytest.raises(InsufficientData):
        get_grouping_key(Event())


def test_rule_override_expands_default(registry):
    event = create_event(
        [
            Frame(module="myapp.views", filename="views.py", context_line="render(x)", function="render_page", in_app=True),
            Frame(module="myapp.views", filename="views.py", context_line="render(y)", function="handle_x", in_app=True),
        ]
    )
    config = GroupingConfig(enhancements_id="project-1", fingerprinting_id="project-1")

    result = get_grouping_key(event, config, registry)
    assert result.key.values == (
        "render-failure",
        "myapp.views|views.py|render(x)",
        "myapp.views|views.py|render(y)",
    )
    assert result.max_frames == 3


def test_enhancements_change_default_key(registry):
    frames = [
        Frame(module="myapp.app", filename="app.py", context_line="run()", in_app=True),
        Frame(module="django.core", filename="base.py", context_line="get()", in_app=True),
    ]
    config = GroupingConfig(enhancements_id="project-1")

    assert get_grouping_key(create_event(frames)).key.values == (
        "myapp.app|app.py|run()",
        "django.core|base.py|get()",
    )
    assert get_grouping_key(create_event(frames), config, registry).key.values == ("myapp.app|app.py|run()",)


def test_grouping_is_deterministic(registry):
    event = Event.from_dict(
        {
            "platform": "python",
            "exception": {
                "values": [
                    {
                        "type": "KeyError",
                        "value": "'user'",
                        "stacktrace": {
                            "frames": [
                                {"module": "myapp.views", "filename": "views.py", "context_line": "  d['user']  ", "in_app": True},
                            ]
                        },
                    }
                ]
            },
        }
    )
    config = GroupingConfig(enhancements_id="project-1", fingerprinting_id="project-1")

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(lambda _: get_grouping_key(event, config, registry), range(20)))

    assert {r.key.values for r in results} == {("myapp.views|views.py|d['user']",)}
    assert len({r.hash for r in results}) == 1


def test_registry_keeps_old_ruleset(registry, read_fixture):
    before = registry.get_enhancements("project-1")

    with pytest.raises(ParseError) as excinfo:
        registry.compile_enhancements("project-1", read_fixture("broken.txt"))
    assert excinfo.value.line == 4

    assert registry.get_enhancements("project-1") is before

    after = registry.compile_enhancements("project-1", "function:foo -app")
    assert registry.get_enhancements("project-1") is after
    assert registry.get_fingerprinting("project-1") is not None


def test_registry_unknown_ruleset():
    registry = RulesetRegistry()
    with pytest.raises(ConfigError):
        registry.get_enhancements("missing")
    with pytest.raises(ConfigError):
        get_grouping_key(Event(fingerprint=("x",)), GroupingConfig(fingerprinting_id="missing"), registry)
    assert len(registry.get_enhancements(None)) == 0


def test_config_upgrade():
    config = GroupingConfig(algorithm_version="legacy:2019-03-12")
    assert config.algorithm_version is AlgorithmVersion.LEGACY

    upgraded = config.upgrade(AlgorithmVersion.NEWSTYLE)
    assert upgraded.algorithm_version is AlgorithmVersion.NEWSTYLE

    with pytest.raises(ConfigError):
        upgraded.upgrade(AlgorithmVersion.LEGACY)
    assert upgraded.upgrade("legacy:2019-03-12", force=True).algorithm_version is AlgorithmVersion.LEGACY

    with pytest.raises(ConfigError):
        GroupingConfig(algorithm_version="newstyle:2099-01-01")


def test_event_from_dict():
    event = Event.from_dict(
        {
            "platform": "javascript",
            "exception": {
                "values": [
                    {"type": "Error", "value": "first"},
                    {
                        "type": "TypeError",
                        "value": "x is undefined",
                        "stacktrace": {
                            "frames": [
                                {
                                    "abs_path": "http://example.com/static/1.2.3/app.3f9a0c1b.js?v=1",
                                    "function": "render",
                                    "in_app": True,
                                    "context_line": "  x.y()  ",
                                },
                                {"filename": "native.c", "platform": "native"},
                            ]
                        },
                    },
                ]
            },
            "logentry": {"formatted": "oops 1", "message": "oops %s"},
            "fingerprint": ["{{ default }}", "web"],
        }
    )

    assert event.exception.type == "TypeError"
    assert event.message == Message(formatted="oops 1", raw="oops %s")
    assert event.fingerprint == ("{{ default }}", "web")

    first, second = event.frames
    assert first.abs_path == "http://example.com/static/app.js"
    assert first.context_line == "x.y()"
    assert first.family == "javascript"
    assert first.orig_in_app is True
    assert second.family == "native"
    assert second.in_app is None


@pytest.mark.parametrize(
    "client, override",
    [
        (["{{ default }}"], None),
        (None, ["{{ default }}"]),
    ],
)
def test_assemble_rejects_empty_key(client, override):
    with pytest.raises(GroupingError, match="empty grouping key"):
        assemble(client, [], override)
