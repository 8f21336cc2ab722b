import pytest

from config.probe_config import ConfigError, ProbeConfig, load_probe_config


def test_bundled_config_loads():
    cfg = load_probe_config(env={})
    assert cfg.coverage == 24
    assert cfg.request_delay_ms == 120
    assert cfg.slippage_bps == 50
    assert cfg.max_extra_bin_arrays == 3
    assert cfg.sol_usd_fallback == 195.0
    assert cfg.symbol_for(cfg.usdc_mint) == "USDC"
    assert cfg.pinned_fee_for("7ubS3GccjhQY99AYNKXjNJqnXjaokEdfdV915xnCb96r") == 4.005
    assert cfg.pinned_fee_for("UnknownPool") == 0.0
    assert cfg.decimals_override()[cfg.sol_mint] == 9


def test_env_overrides_rpc_url():
    cfg = load_probe_config(env={"SOLANA_RPC_URL": "http://my.rpc"})
    assert cfg.rpc_url == "http://my.rpc"


def test_custom_yaml(tmp_path):
    path = tmp_path / "probe.yaml"
    path.write_text(
        "coverage: 4\n"
        "tokens:\n"
        "  MintA: {symbol: AAA}\n"
        "  MintB: BBB\n"
        "pinned_fee_bps:\n"
        "  PoolA: 2.5\n"
    )
    cfg = load_probe_config(str(path), env={})
    assert cfg.coverage == 4
    assert cfg.symbol_for("MintA") == "AAA"
    assert cfg.symbol_for("MintB") == "BBB"
    assert cfg.symbol_for("MintC") == ""
    assert cfg.decimals_override() == {}
    assert cfg.pinned_fee_for("PoolA") == 2.5


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_probe_config(str(tmp_path / "nope.yaml"), env={})


def test_non_mapping_yaml(tmp_path):
    path = tmp_path / "probe.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ConfigError):
        load_probe_config(str(path), env={})


@pytest.mark.parametrize("text", [
    "coverage: 0\n",
    "slippage_bps: 20000\n",
    "request_delay_ms: -1\n",
    "pinned_fee_bps:\n  PoolA: abc\n",
    "pinned_fee_bps:\n  PoolA: -1\n",
])
def test_invalid_values(tmp_path, text):
    path = tmp_path / "probe.yaml"
    path.write_text(text)
    with pytest.raises(ConfigError):
        load_probe_config(str(path), env={})


def test_empty_rpc_url_rejected():
    with pytest.raises(ConfigError):
        ProbeConfig(rpc_url="")
