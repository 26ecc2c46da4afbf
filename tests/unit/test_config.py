"""
Unit tests for run configuration loading.
"""
from pathlib import Path

import pytest

from retail_mmm.config import MMMConfig, config_from_dict, load_config
from retail_mmm.errors import ParameterError

pytestmark = pytest.mark.unit

CONFIG_DIR = Path(__file__).resolve().parents[2] / "configs"


class TestConfig:
    """Tests for YAML and mapping configuration"""

    def test_defaults(self):
        cfg = MMMConfig()
        assert cfg.target_market == "Germany"
        assert cfg.week_start_day == "MON"
        assert cfg.media_cols == ["search_spend", "social_spend", "email_volume"]
        assert [p["name"] for p in cfg.promotions] == ["Black Friday", "Christmas Sale", "Summer Sale"]
        assert "promo_flag" in cfg.control_cols

    def test_shipped_germany_config(self):
        cfg = load_config(CONFIG_DIR / "germany.yaml")
        assert cfg.media_cols == ["search_spend", "social_spend", "email_volume"]
        assert cfg.transforms[2].kind == "log"
        assert [p["name"] for p in cfg.promotions] == ["Black Friday", "Christmas Sale", "Summer Sale"]

    def test_yaml_round_trip(self, tmp_path):
        path = tmp_path / "run.yaml"
        path.write_text(
            "target_market: Germany\n"
            "transforms:\n"
            "  - channel: search_spend\n"
            "    decay: 0.4\n"
            "    half_saturation: 5000\n"
            "control_cols: [promo_flag]\n"
            "add_trend: false\n"
        )
        cfg = load_config(path)
        assert cfg.transforms[0].decay == 0.4
        assert cfg.transforms[0].half_saturation == 5000
        assert cfg.control_cols == ["promo_flag"]
        assert cfg.add_trend is False

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValueError, match="decay_rate"):
            config_from_dict({"decay_rate": 0.5})

    def test_invalid_transform_fails_at_load(self):
        with pytest.raises(ParameterError):
            config_from_dict({"transforms": [{"channel": "search_spend", "decay": 1.2}]})

    def test_transform_without_channel(self):
        with pytest.raises(ValueError):
            config_from_dict({"transforms": [{"decay": 0.2}]})

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")
