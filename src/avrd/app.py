import argparse, logging, signal, sys
import serial
from avrd import __version__
from avrd.logging_config import setup_logging, resolve_logging_from_env_and_cfg
from avrd.provider import ConfigProvider, ConfigUnavailable
from avrd.runtime import load_config, build_runtime
from avrd.schedule import InvalidSchedule, ScheduleEngine

log = logging.getLogger("avrd.app")

def parse_args(argv=None):
    p = argparse.ArgumentParser(prog="avrd", description="Linkstation/Kuro AVR daemon")
    p.add_argument('-d', '--device', help="serial device of the AVR")
    p.add_argument('-c', '--check', action='store_true', help="compute the timer from the config and exit")
    p.add_argument('-e', '--em-mode', action='store_true', help="allow EM-mode on a held reset button")
    p.add_argument('-v', '--version', action='version', version=f"Linkstation/Kuro AVR daemon Version {__version__}")
    p.add_argument('--config', help="daemon config YAML")
    return p.parse_args(argv)

def check_timer(cfg) -> int:
    import datetime as dt
    try:
        payload = ConfigProvider(cfg.paths.timer_file).load()
    except ConfigUnavailable as e:
        print(f"timer file unavailable: {e}"); return 1
    if not payload.valid:
        print(f"timer file invalid: {payload.error}"); return 1
    engine = ScheduleEngine(); engine.load(payload.off_events, payload.on_events, payload.settings)
    if not engine.enabled:
        print("timer disabled"); return 0
    try:
        r = engine.compute_schedule(dt.datetime.now())
    except InvalidSchedule as e:
        print(f"timer invalid: {e}"); return 1
    print(f"power off {r.off_at:%a %m/%d %H:%M} (in {r.shutdown_s}s)")
    print(f"power on  {r.on_at:%a %m/%d %H:%M} (register {r.register}{', clamped' if r.clamped else ''})")
    return 0

def main(argv=None):
    args = parse_args(argv)
    cfg = load_config(args.config)
    if args.device: cfg.serial.device = args.device
    if args.em_mode: cfg.em_mode = True
    setup_logging(*resolve_logging_from_env_and_cfg(cfg))
    if args.check:
        return check_timer(cfg)

    ctrl, channel = build_runtime(cfg)
    try:
        channel.open()
    except serial.SerialException as e:
        log.error("Cannot open %s: %s", cfg.serial.device, e)
        return 3

    def handle_sig(sig, frame): ctrl.request_stop()
    signal.signal(signal.SIGINT, handle_sig); signal.signal(signal.SIGTERM, handle_sig)
    signal.signal(signal.SIGHUP, signal.SIG_IGN); signal.signal(signal.SIGTSTP, signal.SIG_IGN)

    log.info("Linkstation/Kuro AVR daemon Version %s on %s", __version__, cfg.serial.device)
    try:
        ctrl.run()
    except serial.SerialException as e:
        log.error("Serial link lost: %s", e)
        return 3
    finally:
        log.info("Shutting down, AVR watchdog stopped.")
    return 0

if __name__ == "__main__":
    sys.exit(main())
