"""Configuration parsing, gating and validation"""

import pytest

from conftest import make_config
from fanpid.channels import Role
from fanpid.config import (
    DEFAULT_CONFIG,
    Configuration,
    load_config,
    parse_shell_config,
    write_default_config,
)
from fanpid.errors import ConfigError
from fanpid.pid import IntegralConvention


class TestShellFormat:
    def test_scalars_and_arrays(self):
        values = parse_shell_config(
            """
            # comment
            target_temperature="38"   # trailing comment
            drives=( "sda" "sdb"
                     "sdc" )
            compact=("x" "y")
            single=(one)
            empty=( )
            opcode="0x3a 0x02"
            blank=""
            """
        )
        assert values["target_temperature"] == "38"
        assert values["drives"] == ["sda", "sdb", "sdc"]
        assert values["compact"] == ["x", "y"]
        assert values["single"] == ["one"]
        assert values["empty"] == []
        assert values["opcode"] == "0x3a 0x02"
        assert values["blank"] == ""

    def test_unterminated_array(self):
        with pytest.raises(ConfigError, match="Unterminated"):
            parse_shell_config('drives=( "sda"')

    def test_stray_token(self):
        with pytest.raises(ConfigError):
            parse_shell_config("just words")

    def test_unbalanced_quote(self):
        with pytest.raises(ConfigError):
            parse_shell_config('kp="4')

    def test_default_template_parses(self):
        config = Configuration.from_mapping(parse_shell_config(DEFAULT_CONFIG))
        assert config.edited is False
        assert config.drives == ("sda", "sdb")
        assert config.layout.indices(Role.INTAKE) == (1, 2)
        assert config.fan_write_opcode == ("0x3a", "0x01")
        assert not config.hba_enabled


class TestLoadConfig:
    def test_unedited_default_is_refused(self, tmp_path):
        path = write_default_config(tmp_path / "fanpid.conf")
        with pytest.raises(ConfigError, match="not been edited"):
            load_config(path)

    def test_edited_default_loads(self, tmp_path):
        path = tmp_path / "fanpid.conf"
        path.write_text(DEFAULT_CONFIG.replace('config_edited="false"', 'config_edited="true"'))
        config = load_config(path)
        assert config.target_temperature == 37
        assert config.tick_interval_minutes == 5

    @pytest.mark.parametrize("value", ["yes", "1", "on", "True", "TRUE"])
    def test_only_exact_sentinel_unlocks(self, tmp_path, value):
        path = tmp_path / "fanpid.conf"
        path.write_text(DEFAULT_CONFIG.replace('config_edited="false"', f'config_edited="{value}"'))
        with pytest.raises(ConfigError, match="not been edited"):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "absent.conf")

    def test_yaml(self, tmp_path):
        path = tmp_path / "fanpid.yaml"
        path.write_text(
            "config_edited: true\n"
            "target_temperature: 36\n"
            "cooling_only: true\n"
            "integral_convention: scaled\n"
            "drives: [sda, sdb]\n"
            "intake_slots: [0, 1]\n"
            "hba_sensors: [HBA Temp]\n"
        )
        config = load_config(path)
        assert config.target_temperature == 36
        assert config.cooling_only is True
        assert config.integral_convention is IntegralConvention.SCALED
        assert config.layout.indices(Role.INTAKE) == (0, 1)
        assert [g.name for g in config.groups] == ["drives", "hba"]

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "fanpid.yml"
        path.write_text("drives: [sda\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path)

    def test_default_is_never_overwritten(self, tmp_path):
        path = tmp_path / "fanpid.conf"
        path.write_text("mine")
        with pytest.raises(ConfigError):
            write_default_config(path)
        assert path.read_text() == "mine"


class TestValidation:
    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"min_duty": "60", "max_duty": "50"}, "Duty limits"),
            ({"max_duty": "120"}, "Duty limits"),
            ({"min_duty": "95", "duty_differential": "10"}, "exhaust"),
            ({"duty_differential": "-5"}, "negative"),
            ({"tick_interval_minutes": "0"}, "positive"),
            ({"drives": []}, "drive"),
            ({"kp": "fast"}, "number"),
            ({"min_duty": "lots"}, "integer"),
            ({"cooling_only": "maybe"}, "true or false"),
            ({"integral_convention": "sideways"}, "integral_convention"),
            ({"intake_slots": ["9"]}, "outside"),
            ({"exhaust_slots": ["1"]}, "both"),
            ({"fan_read_opcode": "0x3a"}, "opcodes"),
            (
                {"primary_slots": [], "intake_slots": [], "exhaust_slots": [], "auxiliary_slots": []},
                "No fan slots",
            ),
        ],
    )
    def test_rejected(self, overrides, message):
        with pytest.raises(ConfigError, match=message):
            make_config(**overrides)

    def test_differential_allowed_without_exhaust_fans(self):
        config = make_config(min_duty="95", duty_differential="10", exhaust_slots=[])
        assert config.duty_differential == 10


class TestGroups:
    def test_drive_group_only(self, config):
        (drives,) = config.groups
        assert drives.source == "smart"
        assert drives.members == ("sda", "sdb")
        assert drives.roles == (Role.PRIMARY, Role.INTAKE, Role.AUXILIARY)

    def test_hba_group_drives_auxiliary(self):
        config = make_config(hba_sensors=["HBA Temp"], hba_target_temperature="45", ambient_sensors=["MB Temp"])
        drives, hba = config.groups
        assert drives.ambient_sensors == ("MB Temp",)
        assert hba.source == "ipmi"
        assert hba.roles == (Role.AUXILIARY,)
        assert hba.target_temperature == 45
        assert hba.ambient_sensors == ()
