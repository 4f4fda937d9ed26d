import io
import sys
from pathlib import Path

import httpx
import pytest

from sake.core.collection import TaskCollection
from sake.core.errors import DefinitionSyntaxError, SandboxViolation, SourceUnavailable
from sake.core.parser import parse, parse_text
from sake.core.task import Task


def _summary(tasks: TaskCollection) -> list[tuple]:
    return [(t.name, t.comment, t.parameters, t.dependencies) for t in tasks]


def test_sample_file(sample_file: Path):
    tasks = parse(sample_file)
    assert _summary(tasks) == [
        ("db:migrate", "Migrate the database", (), ("environment",)),
        ("db:version", None, (), ()),
        ("web:start", "Start the web server", ("port",), ()),
    ]
    assert tasks.lookup("db:migrate").body == "ActiveRecord::Migrator.migrate('db/migrate')"
    assert tasks.lookup("web:start").body == 'system "rails server -p #{args[:port]}"'


def test_namespace_flattening():
    text = """
namespace('a') {
  namespace :b do
    task 'x'
  end
  task :y
}
task 'z'
"""
    assert parse_text(text).names() == ["a:b:x", "a:y", "z"]


def test_description_attaches_to_next_task_only():
    text = """
description 'only the first'
task :one
task :two
"""
    tasks = parse_text(text)
    assert tasks.lookup("one").comment == "only the first"
    assert tasks.lookup("two").comment is None


def test_pending_description_carries_into_namespace():
    text = """
desc 'first'
namespace :ns do
  task :inner
end
task :outer
"""
    tasks = parse_text(text)
    assert tasks.lookup("ns:inner").comment == "first"
    assert tasks.lookup("outer").comment is None


@pytest.mark.parametrize(
    "declaration, parameters, dependencies",
    [
        ("task :t", (), ()),
        ("task :t => :a", (), ("a",)),
        ("task :t => [:a, 'b']", (), ("a", "b")),
        ("task 't', :p1, :p2, :needs => [ 'd1', 'd2' ]", ("p1", "p2"), ("d1", "d2")),
        ("task :t, [:p1, :p2] => :d", ("p1", "p2"), ("d",)),
        ("task :t, [:p] => [:d1, :d2]", ("p",), ("d1", "d2")),
        ("task :t, [:p], needs: [:d]", ("p",), ("d",)),
        ("task t: %w[a b]", (), ("a", "b")),
        ("task(:t, :p)", ("p",), ()),
        ("task(:t => :d) { }", (), ("d",)),
    ],
)
def test_task_argument_forms(declaration, parameters, dependencies):
    tasks = parse_text(declaration + "\n")
    assert _summary(tasks) == [("t", None, parameters, dependencies)]


def test_bodies_are_captured_verbatim_and_dedented():
    text = """
task :deploy do |t|
  if ENV['FAST']
    sh "cap deploy:fast"
  else
    %w[a b].each { |x| puts x }
  end
end
"""
    body = parse_text(text).lookup("deploy").body
    assert body == (
        "if ENV['FAST']\n"
        '  sh "cap deploy:fast"\n'
        "else\n"
        "  %w[a b].each { |x| puts x }\n"
        "end"
    )


def test_heredoc_with_end_inside_body():
    text = """
task :notes do
  puts <<~TEXT
    this line says end
    end
  TEXT
end
task :after
"""
    tasks = parse_text(text)
    assert tasks.names() == ["notes", "after"]
    assert "this line says end" in tasks.lookup("notes").body


def test_braces_body_on_one_line():
    tasks = parse_text("task(:quick) { puts 'hi' }\n")
    assert tasks.lookup("quick").body == "puts 'hi'"


def test_inert_statements_are_skipped():
    text = """
require 'rake'
VERSION = '1.0'
def helper(x)
  File.write('out', x)
end
ENV['X'] ||= 'y'
task :t do
  helper(VERSION)
end
"""
    assert parse_text(text).names() == ["t"]


def test_comments_and_data_section_are_ignored():
    text = """
# task :commented_out
=begin
task :in_embedded_doc
=end
task :real
__END__
task :after_end
"""
    assert parse_text(text).names() == ["real"]


def test_round_trip_preserves_structure():
    original = TaskCollection(
        [
            Task("db:migrate", ["version"], ["environment"], "Run 'migrations'", "Migrator.run"),
            Task("plain"),
            Task("ns:deps", dependencies=["a", "b:c"], comment="with deps"),
            Task("odd name", parameters=["with space"]),
        ]
    )
    reparsed = parse_text(original.render())
    assert _summary(reparsed) == _summary(original)
    assert reparsed.lookup("db:migrate").body == "Migrator.run"


@pytest.mark.parametrize(
    "text, line",
    [
        ("task :t do\n  puts 1\n", 1),
        ("namespace :a do\n  task :b\n", 3),
        ("task :t\nend\n", 2),
        ("desc\ntask :t\n", 1),
        ("task\n", 1),
        ("task 'unterminated\n", 1),
    ],
)
def test_syntax_errors_report_line(text, line):
    with pytest.raises(DefinitionSyntaxError) as excinfo:
        parse_text(text, source="Rakefile")
    assert excinfo.value.line == line
    assert str(excinfo.value).startswith(f"Rakefile:{line}:")


@pytest.mark.parametrize(
    "text, operation",
    [
        ("system 'rm -rf /'\n", "system"),
        ("sh('ls')\n", "sh"),
        ("`touch /tmp/x`\n", "`touch /tmp/x`"),
        ("File.write('x', 'y')\n", "File.write"),
        ("FileUtils.rm_rf('build')\n", "FileUtils.rm_rf"),
        ("namespace :x do\n  exec 'ls'\nend\n", "exec"),
        ("if true\n  system 'ls'\nend\n", "system"),
        ("task :t => `whoami`\n", "`whoami`"),
    ],
)
def test_side_effects_outside_task_bodies_are_refused(text, operation):
    with pytest.raises(SandboxViolation) as excinfo:
        parse_text(text, source="evil.rake")
    assert excinfo.value.operation == operation
    assert "evil.rake" in str(excinfo.value)


def test_side_effects_inside_task_bodies_and_defs_are_allowed():
    text = """
ROOT = File.expand_path('..', __FILE__)
def clean!
  FileUtils.rm_rf('build')
end
task :clean do
  system 'rm -rf build'
  `echo done`
end
"""
    assert parse_text(text).names() == ["clean"]


def test_lenient_parse_skips_side_effect_scan():
    assert parse_text("system 'ls'\ntask :t\n", strict=False).names() == ["t"]


def test_parse_reads_stdin(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(sys, "stdin", io.StringIO("task :from_stdin\n"))
    assert parse("-").names() == ["from_stdin"]


def test_parse_missing_file(tmp_path: Path):
    with pytest.raises(SourceUnavailable, match="no such file"):
        parse(tmp_path / "missing.rake")


def test_parse_url(monkeypatch: pytest.MonkeyPatch):
    seen = {}

    def fake_get(url, timeout, follow_redirects):
        seen["url"] = url
        return httpx.Response(200, text="task :remote\n", request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx, "get", fake_get)
    assert parse("http://example.test/tasks").names() == ["remote"]
    assert seen["url"] == "http://example.test/tasks"


def test_parse_url_http_error(monkeypatch: pytest.MonkeyPatch):
    def fake_get(url, timeout, follow_redirects):
        return httpx.Response(404, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx, "get", fake_get)
    with pytest.raises(SourceUnavailable, match="HTTP 404"):
        parse("https://example.test/missing")


def test_parse_url_transport_error(monkeypatch: pytest.MonkeyPatch):
    def fake_get(url, timeout, follow_redirects):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(httpx, "get", fake_get)
    with pytest.raises(SourceUnavailable, match="connection refused"):
        parse("http://unreachable.test/")


def test_heredoc_and_string_lines_keep_their_columns():
    text = (
        "task :notes do\n"
        "    puts <<EOS\n"
        "plain\n"
        "EOS\n"
        "    puts <<-TXT\n"
        "      dashed\n"
        "      TXT\n"
        "    x = 'one\n"
        "  two'\n"
        "end\n"
    )
    assert parse_text(text).lookup("notes").body == (
        "puts <<EOS\nplain\nEOS\nputs <<-TXT\n      dashed\n      TXT\nx = 'one\n  two'"
    )


@pytest.mark.parametrize(
    "declaration",
    [
        "file 'x' do\n  sh 'cc'\nend\n",
        "rule '.o' => '.c' do |t| sh 'cc' end\n",
        "directory 'pkg' do\n  mkdir_p 'pkg'\nend\n",
        "multitask :all => %w[a b] do\n  system 'make'\nend\n",
        "file_create 'out' do |t|\n  File.write(t.name, '')\nend\n",
        "file 'y' => ['x'] { sh 'cc' }\n",
        "if ENV['CI']\n  file 'z' do\n    sh 'cc'\n  end\nend\n",
    ],
)
def test_rake_declaration_blocks_are_not_scanned(declaration):
    assert parse_text(declaration + "task :a\n").names() == ["a"]


def test_side_effects_in_arguments_of_rake_declarations_are_refused():
    with pytest.raises(SandboxViolation):
        parse_text("file `whoami` do\nend\n")


def test_parse_stdin_that_is_not_utf8(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(sys, "stdin", io.TextIOWrapper(io.BytesIO(b"task :\xff\n"), encoding="utf-8"))
    with pytest.raises(SourceUnavailable, match="standard input"):
        parse("-")
