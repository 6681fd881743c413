import os, yaml
from avrd.config import AppConfig
from avrd.actions import ScriptExecutor
from avrd.controller import Controller
from avrd.disk import StatvfsProbe
from avrd.provider import ConfigProvider
from avrd.schedule import ScheduleEngine
from avrd.serialio import SerialChannel
CONFIG_PATHS=['config/config.yaml','config.yaml','/etc/avrd/config.yaml']
def load_config(path: str | None = None) -> AppConfig:
    for p in ([path] if path else []) + CONFIG_PATHS:
        if p and os.path.exists(p):
            with open(p,'r') as f:
                return AppConfig.model_validate(yaml.safe_load(f) or {})
    if path: raise FileNotFoundError(path)
    return AppConfig()
def build_runtime(cfg: AppConfig):
    channel=SerialChannel(cfg.serial.device, cfg.serial.baudrate)
    actions=ScriptExecutor(cfg.paths.event_script, cfg.serial.device)
    ctrl=Controller(channel, ScheduleEngine(), ConfigProvider(cfg.paths.timer_file), actions,
                    StatvfsProbe(cfg.paths.mounts), em_mode=cfg.em_mode)
    return ctrl, channel
