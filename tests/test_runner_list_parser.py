from __future__ import annotations

from runnerhub.runners.parser import (
    LiveRunnerStatus,
    build_description,
    find_by_name,
    index_by_token,
    parse_runner_list,
    split_description_marker,
    strip_ansi,
)


LIST_FIXTURE = (
    "\x1b[0;33mRuntime platform                                    \x1b[0;m  arch=amd64 os=linux pid=91 "
    "revision=5316d4ac version=14.6.0\n"
    "Listing configured runners                          ConfigFile=/etc/gitlab-runner/config.toml\n"
    "s21_containers                                      \x1b[0;m  Executor=shell Token=ASn7aZYvdLuHyyxAsbUY "
    "URL=https://git.21-school.ru\n"
    "\n"
    "   \n"
    "[owner:42:1718000000000000000-beef] build box 1     \x1b[0;m  Executor=docker Token=glrt-xyz "
    "URL=https://gitlab.example.org\n"
    "broken line without fields\n"
    "no-token-runner                                     Executor=shell URL=https://x\n"
    "ConfigFile=/etc/gitlab-runner/config.toml\n"
)


def test_parses_simple_line() -> None:
    out = parse_runner_list("foo  Executor=shell Token=abc123 URL=https://x")
    assert out == [LiveRunnerStatus(name="foo", token="abc123", status="shell", url="https://x")]


def test_fixture_skips_banners_noise_and_incomplete_lines() -> None:
    out = parse_runner_list(LIST_FIXTURE)
    assert [(s.name, s.token, s.status) for s in out] == [
        ("s21_containers", "ASn7aZYvdLuHyyxAsbUY", "shell"),
        ("[owner:42:1718000000000000000-beef] build box 1", "glrt-xyz", "docker"),
    ]
    assert out[0].url == "https://git.21-school.ru"


def test_url_is_optional() -> None:
    out = parse_runner_list("runner-a Executor=shell Token=t1\n")
    assert out == [LiveRunnerStatus(name="runner-a", token="t1", status="shell", url=None)]


def test_line_without_executor_is_skipped() -> None:
    assert parse_runner_list("runner-a Token=t1 URL=https://x\n") == []


def test_parsing_is_pure_and_repeatable() -> None:
    first = parse_runner_list(LIST_FIXTURE)
    second = parse_runner_list(LIST_FIXTURE)
    assert first == second
    assert parse_runner_list("") == []


def test_strip_ansi_removes_color_sequences() -> None:
    assert strip_ansi("\x1b[0;32mok\x1b[0;m") == "ok"


def test_index_by_token_keeps_first_occurrence() -> None:
    a = LiveRunnerStatus(name="a", token="t", status="shell")
    b = LiveRunnerStatus(name="b", token="t", status="docker")
    assert index_by_token([a, b]) == {"t": a}


def test_description_marker_roundtrip_and_uniqueness() -> None:
    d1 = build_description("user-7", "  build-1 ")
    d2 = build_description("user-7", "build-1")
    assert d1 != d2
    assert split_description_marker(d1) == ("user-7", "build-1")


def test_split_description_marker_accepts_owner_ids_with_colons() -> None:
    assert split_description_marker("[owner:org:team:1-ab] x") == ("org:team", "x")


def test_split_description_marker_without_marker() -> None:
    assert split_description_marker("s21_containers") == (None, "s21_containers")


def test_find_by_name_is_exact() -> None:
    entries = parse_runner_list(LIST_FIXTURE)
    assert find_by_name(entries, "[owner:42:1718000000000000000-beef] build box 1") is not None
    assert find_by_name(entries, "[owner:42:1718000000000000000-beef] build box") is None


def test_field_markers_inside_the_name_do_not_leak_into_fields() -> None:
    line = (
        "[owner:u1:1-ab] deploy Token=bogus Executor=docker URL=https://evil     \x1b[0;m  "
        "Executor=shell Token=glrt-real URL=https://ci.example.org\n"
    )
    assert parse_runner_list(line) == [
        LiveRunnerStatus(
            name="[owner:u1:1-ab] deploy Token=bogus Executor=docker URL=https://evil",
            token="glrt-real",
            status="shell",
            url="https://ci.example.org",
        )
    ]


def test_name_ending_in_executor_marker_is_kept_whole() -> None:
    out = parse_runner_list("build Executor=x     Executor=shell Token=t1\n")
    assert out == [LiveRunnerStatus(name="build Executor=x", token="t1", status="shell", url=None)]


def test_line_with_fields_out_of_order_is_skipped() -> None:
    assert parse_runner_list("runner-a Token=t1 Executor=shell\n") == []
