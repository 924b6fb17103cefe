import argparse
import asyncio
import sys

from ftpcore.controller import FTPController


async def main_simple(config_path: str):
    controller = FTPController(config_path)
    try:
        await controller.start()
        print("\n[OK] FTP server running -- Ctrl+C to stop\n")
        await controller.wait()
    except KeyboardInterrupt:
        print("\n[!] Ctrl+C received")
    finally:
        print("[*] Shutting down...")
        await controller.stop()
        print("[OK] Shutdown complete")


def main():
    parser = argparse.ArgumentParser(prog="pocketftp", description="Single-client FTP server")
    parser.add_argument("--config", default="config/ftpd.yaml", help="path to the YAML configuration")
    args = parser.parse_args()

    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    try:
        asyncio.run(main_simple(args.config))
    except KeyboardInterrupt:
        pass
    finally:
        print("\n[+] Program ended")


if __name__ == "__main__":
    main()
