import os
import tempfile

import pytest

# Point the history database somewhere disposable before livecms.core.dao is imported
TEST_DB_PATH = tempfile.mkstemp(suffix='.db')[1]
os.environ['DB_PATH'] = TEST_DB_PATH
os.environ.setdefault('CMS_BACKUP_DIR', tempfile.mkdtemp(prefix='livecms-backups-'))

from livecms.core.db import init_db  # noqa: E402

PAGE = """<html>
<body>
<main>
<h1>Welcome to our site</h1>
<p class="lead">Hello world</p>
<img src="/images/hero.png" alt="Hero">
</main>
</body>
</html>
"""


@pytest.fixture
def project(tmp_path, monkeypatch):
    """Temporary project root with one template, its own backups and history db."""
    root = tmp_path / "site"
    (root / "templates").mkdir(parents=True)
    (root / "templates" / "page.html").write_text(PAGE, encoding="utf-8")

    monkeypatch.setenv("CMS_PROJECT_ROOT", str(root))
    monkeypatch.setenv("CMS_TEMPLATE_ROOTS", "templates")
    monkeypatch.setenv("CMS_BACKUP_DIR", str(tmp_path / "backups"))
    monkeypatch.setenv("DB_PATH", str(tmp_path / "cms.db"))
    monkeypatch.delenv("CMS_COMPILED_CACHE_DIR", raising=False)
    monkeypatch.delenv("CMS_API_TOKEN", raising=False)
    init_db()
    return root
