#main.py
"""
Main entry point for the dryer controller.
Builds the hardware, ledger and chat collaborators from the configuration and
runs the control loop until SIGINT/SIGTERM.
"""

import argparse            # Parses command-line flags
import logging             # Imports logging to handle application logging
import queue               # Bounded queues between the chat threads and the loop
import signal              # Observes process shutdown signals
import sys                 # Exit codes
import threading           # Shutdown event shared by all threads
from decimal import Decimal
from typing import Tuple

from dryer_control.chat.console import ConsoleReceiver, ConsoleSender
from dryer_control.chat.telegram import TelegramApi, TelegramReceiver, TelegramSender
from dryer_control.communicator.base_communication import SerialTransport
from dryer_control.communicator.meter_communicator import PowerMeter
from dryer_control.config import (
    METER_PARAMETERS,
    OUTBOX_QUEUE_SIZE,
    REQUEST_QUEUE_SIZE,
    AppConfig,
    load_config,
    setup_logging,
)
from dryer_control.control_loop import ControlLoop
from dryer_control.controller import OffController
from dryer_control.device_simulator import SimulatedPZEM, SimulatedSwitch
from dryer_control.errors import DryerControlError, LedgerWriteFailed
from dryer_control.ledger import InMemoryLedger, SqliteLedger
from dryer_control.meters import get_protocol
from dryer_control.supervisor import SessionSupervisor
from dryer_control.switch import ApplianceSwitch, SerialLineSwitch


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Shared dryer controller with per-user energy billing")
    parser.add_argument("--simulate", action="store_true",
                        help="use a simulated meter, relay and ledger with a console chat")
    parser.add_argument("--log-file", help="also write logs to this rotating file")
    parser.add_argument("--debug", action="store_true", help="log frames and billing details")
    parser.add_argument("--list-ports", action="store_true", help="list serial ports and exit")
    return parser.parse_args(argv)


def build_hardware(config: AppConfig, simulate: bool,
                   logger: logging.Logger) -> Tuple[PowerMeter, ApplianceSwitch]:
    """
    Opens the meter and relay, or wires up the simulator.
    The relay is left released.
    """
    params = dict(METER_PARAMETERS[config.meter_type])
    params["address"] = config.meter_address
    params["timeout"] = config.serial_timeout_s
    params["write_timeout"] = config.serial_timeout_s
    protocol = get_protocol(config.meter_type, params)

    if simulate:
        switch = SimulatedSwitch()
        port = SimulatedPZEM(address=config.meter_address, config={"power_w": 1500.0, "noise_level": 0.02},
                             switch=switch)
        meter = PowerMeter(SerialTransport(ser=port), protocol)
        meter.connect()
        logger.info("Hardware ready (simulated)")
        return meter, switch

    if config.relay_port:
        transport = SerialTransport(port=config.meter_port, settings=params)
    else:
        # The relay hangs off the meter adapter's control line: open the port with it released.
        released = config.relay_active_low
        transport = SerialTransport(port=config.meter_port, settings=params,
                                    line_levels={"dtr": released, "rts": released})
    meter = PowerMeter(transport, protocol)
    meter.connect()

    switch = SerialLineSwitch(port=config.relay_port or config.meter_port, line=config.relay_line,
                              active_low=config.relay_active_low,
                              ser=None if config.relay_port else transport.ser)
    try:
        switch.open()
    except DryerControlError:
        meter.disconnect()
        raise
    logger.info(f"Hardware ready on {config.meter_port}")
    return meter, switch


def release_hardware(meter: PowerMeter, switch: ApplianceSwitch, logger: logging.Logger) -> None:
    """
    Closes the relay and meter ports. The relay must already be off.
    """
    switch.close()
    if meter.disconnect():
        logger.info("Meter port closed")


def main(argv=None) -> int:
    """
    Main function to start the dryer controller.
    Sets up logging, builds the collaborators and runs the control loop.
    """
    args = parse_args(argv)

    if args.list_ports:
        for port in SerialTransport.list_ports():
            print(port)
        return 0

    try:
        config = load_config()
    except DryerControlError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    # Initializes logging for the whole package
    logger = setup_logging("dryer_control", log_file=args.log_file or config.log_file,
                           level=logging.DEBUG if args.debug else logging.INFO)
    logger.info("Starting dryer controller")

    stop_event = threading.Event()

    def request_stop(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)

    requests_queue: queue.Queue = queue.Queue(maxsize=REQUEST_QUEUE_SIZE)
    outbox: queue.Queue = queue.Queue(maxsize=OUTBOX_QUEUE_SIZE)

    if not args.simulate and not config.api_token:
        logger.error("API_TOKEN is not set")
        return 2

    try:
        meter, switch = build_hardware(config, args.simulate, logger)
    except DryerControlError as e:
        logger.error(f"Failed to open hardware: {e}", exc_info=True)
        return 1

    try:
        if args.simulate:
            ledger = InMemoryLedger()
            ledger.add_user(1, "Alice", Decimal("10.00"))
            ledger.add_user(2, "Bruno", Decimal("0.50"))
            ConsoleReceiver(requests_queue).start(stop_event)
            ConsoleSender(outbox).start(stop_event)
        else:
            ledger = SqliteLedger(config.ledger_path)
            api = TelegramApi(config.api_token)
            receiver = TelegramReceiver(api, requests_queue)
            receiver.skip_pending_updates()
            receiver.start(stop_event)
            TelegramSender(api, outbox).start(stop_event)
    except DryerControlError as e:
        logger.error(f"Failed to start: {e}", exc_info=True)
        stop_event.set()
        release_hardware(meter, switch, logger)
        return 1

    supervisor = SessionSupervisor(OffController(meter, switch), config.billing,
                                   operator_contact=config.operator_contact)
    loop = ControlLoop(supervisor, ledger, requests_queue, outbox,
                       request_wait_s=config.tick_interval_s)
    try:
        loop.run(stop_event)
    except LedgerWriteFailed as e:
        logger.critical(f"Stopping: balance could not be persisted: {e}", exc_info=True)
        return 1
    finally:
        stop_event.set()
        release_hardware(meter, switch, logger)
    return 0


if __name__ == "__main__":
    # Entry point to run the main function
    sys.exit(main())
