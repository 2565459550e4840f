"""Configuration merging tests."""
import json

import pytest

from onshape_auth.config import API_BASE, config_from_env, load_config


class TestConfigFromEnv:
    def test_reads_documented_variables(self):
        env = {
            'ONSHAPE_AUTH_TYPE': 'oauth',
            'ONSHAPE_ACCESS_KEY': 'ak',
            'ONSHAPE_SECRET_KEY': 'sk',
            'ONSHAPE_OAUTH_TOKEN': 'tok',
        }
        assert config_from_env(env) == {
            'auth_type': 'oauth',
            'access_key': 'ak',
            'secret_key': 'sk',
            'access_token': 'tok',
        }

    def test_client_credentials_fallback_names(self):
        env = {'OAUTH_CLIENT_ID': 'cid', 'OAUTH_CLIENT_SECRET': 'csecret'}
        config = config_from_env(env)
        assert config['client_id'] == 'cid'
        assert config['client_secret'] == 'csecret'
        # Client secret is never mistaken for a token
        assert 'access_token' not in config

    def test_ignores_empty_values(self):
        assert config_from_env({'ONSHAPE_ACCESS_KEY': ''}) == {}


class TestLoadConfig:
    def test_options_beat_environment(self):
        config = load_config(
            {'access_key': 'from-options', 'secret_key': None},
            environ={'ONSHAPE_ACCESS_KEY': 'from-env', 'ONSHAPE_SECRET_KEY': 'env-secret'},
        )
        assert config['access_key'] == 'from-options'
        assert config['secret_key'] == 'env-secret'

    def test_default_base_url(self):
        assert load_config({}, environ={})['base_url'] == API_BASE

    def test_strips_trailing_slash(self):
        config = load_config({'base_url': 'https://cad.onshape.com/api/v10/'}, environ={})
        assert config['base_url'] == 'https://cad.onshape.com/api/v10'

    def test_environment_beats_credential_file(self, tmp_path):
        secrets_file = tmp_path / ".secrets"
        secrets_file.write_text(json.dumps({'accessKey': 'file-key', 'secretKey': 'file-secret'}))

        config = load_config({}, environ={'ONSHAPE_ACCESS_KEY': 'env-key'}, secrets_path=secrets_file)

        assert config['access_key'] == 'env-key'
        assert config['secret_key'] == 'file-secret'

    def test_missing_credential_file(self, tmp_path):
        config = load_config({}, environ={}, secrets_path=tmp_path / "missing")
        assert 'access_key' not in config
