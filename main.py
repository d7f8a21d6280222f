"""
============================================================
 FLOWSTATE — Main Entry Point
 Run: python main.py [--port 8000] [--posture-backend vision]
============================================================
"""

import argparse
import logging
import socket

import uvicorn

import config


def check_internet(timeout: float = 3.0) -> bool:
    """Quick internet check — TCP connect to a few public DNS resolvers."""
    targets = [("8.8.8.8", 53), ("1.1.1.1", 53), ("208.67.222.222", 53)]
    for host, port in targets:
        try:
            s = socket.create_connection((host, port), timeout=timeout)
            s.close()
            return True
        except OSError:
            continue
    return False


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="FLOWSTATE focus coaching server")
    parser.add_argument("--host", default=config.FLOWSTATE_HOST)
    parser.add_argument("--port", type=int, default=config.FLOWSTATE_PORT)
    parser.add_argument("--posture-backend", choices=("landmarks", "vision"),
                        default=config.POSTURE_BACKEND)
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    print(r"""
    ╔═══════════════════════════════════════════════════╗
    ║                                                   ║
    ║   ███████╗██╗      ██████╗ ██╗    ██╗             ║
    ║   ██╔════╝██║     ██╔═══██╗██║    ██║             ║
    ║   █████╗  ██║     ██║   ██║██║ █╗ ██║             ║
    ║   ██╔══╝  ██║     ██║   ██║██║███╗██║  STATE      ║
    ║   ██║     ███████╗╚██████╔╝╚███╔███╔╝             ║
    ║   ╚═╝     ╚══════╝ ╚═════╝  ╚══╝╚══╝              ║
    ║                                                   ║
    ║   Calm focus coaching for study sessions          ║
    ╚═══════════════════════════════════════════════════╝
    """)

    print(f"  🌐 API:        http://localhost:{args.port}")
    print(f"  📷 Camera:     Source {config.CAMERA_INDEX}")
    print(f"  🧠 Posture:    {args.posture_backend}")

    print("  🔎 Network:    Checking connectivity...", end="", flush=True)
    internet_ok = check_internet()
    if internet_ok:
        print("\r  🌍 Network:    ✅ ONLINE                              ")
    else:
        print("\r  🌍 Network:    ⚠️  OFFLINE — static nudges only        ")

    if not config.LLM_API_KEY:
        llm_status = "⚠️  OFFLINE (no API key)"
    elif not internet_ok:
        llm_status = "⚠️  OFFLINE (no internet)"
    else:
        llm_status = f"✅ ONLINE ({config.NUDGE_MODEL})"
    print(f"  🤖 Nudges:     {llm_status}")
    print(f"  💾 Database:   {config.DATABASE_URI}")
    print()

    from flowstate.engine import SessionEngine
    from flowstate.server import create_app

    app = create_app(
        engine_factory=lambda emit: SessionEngine(emit=emit, posture_backend=args.posture_backend),
    )
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
