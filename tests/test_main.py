"""Tests for the command line converter and configuration selection."""

import json

import pytest

from sketchdb.main import main
from sketchdb.web_app.app_config import (
    DevelopmentConfig, ProductionConfig, TestingConfig, get_config,
)

SQL = """
CREATE TABLE users (id INT PRIMARY KEY AUTO_INCREMENT, email VARCHAR(255) NOT NULL UNIQUE);
CREATE TABLE posts (id INT PRIMARY KEY, user_id INT, FOREIGN KEY (user_id) REFERENCES users(id));
"""


class TestCli:

    def test_writes_diagram_json(self, tmp_path, capsys):
        source = tmp_path / 'schema.sql'
        source.write_text(SQL, encoding='utf-8')
        assert main([str(source)]) == 0

        diagram = json.loads(capsys.readouterr().out)
        assert [n['data']['label'] for n in diagram['nodes']] == ['users', 'posts']
        assert len(diagram['edges']) == 1

    def test_sql_output_to_file(self, tmp_path):
        source = tmp_path / 'schema.sql'
        target = tmp_path / 'out.sql'
        source.write_text(SQL, encoding='utf-8')
        assert main([str(source), '--sql', '-o', str(target)]) == 0
        assert 'CREATE TABLE posts' in target.read_text(encoding='utf-8')

    def test_warnings_go_to_stderr(self, tmp_path, capsys):
        source = tmp_path / 'schema.sql'
        source.write_text('DROP TABLE x;', encoding='utf-8')
        assert main([str(source)]) == 0
        assert 'warning: Skipped unsupported statement' in capsys.readouterr().err

    def test_sql_output_for_a_dialect(self, tmp_path, capsys):
        source = tmp_path / 'schema.sql'
        source.write_text(SQL, encoding='utf-8')
        assert main([str(source), '--sql', '--dialect', 'mysql']) == 0
        assert 'id INTEGER AUTO_INCREMENT NOT NULL PRIMARY KEY' in capsys.readouterr().out

    def test_missing_file(self, tmp_path):
        assert main([str(tmp_path / 'missing.sql')]) == 1


class TestConfig:

    @pytest.mark.parametrize('env, expected', [
        ('production', ProductionConfig),
        ('testing', TestingConfig),
        ('unknown', DevelopmentConfig),
    ])
    def test_get_config(self, monkeypatch, env, expected):
        monkeypatch.setenv('FLASK_ENV', env)
        assert get_config() is expected

    def test_production_requires_secrets(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, 'DB_PASSWORD', '')
        with pytest.raises(ValueError):
            ProductionConfig.validate()

    def test_flask_config_has_only_upper_keys(self):
        config = TestingConfig.to_flask_config()
        assert config['MAX_SQL_LENGTH'] == 5000
        assert all(key.isupper() for key in config)
