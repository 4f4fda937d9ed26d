from pathlib import Path

import pytest

from sake.core.store import Store

SAMPLE_TASKS = """\
namespace :db do
  desc 'Migrate the database'
  task :migrate => :environment do
    ActiveRecord::Migrator.migrate('db/migrate')
  end

  task :version do
    puts ActiveRecord::Migrator.current_version
  end
end

namespace 'web' do
  desc 'Start the web server'
  task :start, :port do |t, args|
    system "rails server -p #{args[:port]}"
  end
end
"""


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep every test away from the real ~/.sake and ~/.config/sake."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("SAKE_STORE", raising=False)
    monkeypatch.setenv("SAKE_CONFIG_FILE", str(home / ".config" / "sake" / "config.json"))
    return home


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "store" / ".sake"


@pytest.fixture
def store(store_path: Path) -> Store:
    return Store(store_path)


@pytest.fixture
def sample_file(tmp_path: Path) -> Path:
    path = tmp_path / "Rakefile"
    path.write_text(SAMPLE_TASKS)
    return path
