"""Upload a character sheet from the command line, driving the same dialog a front end would."""

import argparse
import asyncio
import mimetypes
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from crystal_ball.client.api_client import CrystalBallClient
from crystal_ball.client.upload_dialog import DialogPhase, SelectedFile, UploadDialog


def _print_state(dialog: UploadDialog) -> None:
    if dialog.phase is DialogPhase.UPLOADING:
        print(f"\ruploading... {dialog.progress:5.1f}%", end="", flush=True)
    elif dialog.error:
        print(f"\nerror: {dialog.error}")


async def run(args) -> int:
    with open(args.path, "rb") as fh:
        data = fh.read()
    content_type = mimetypes.guess_type(args.path)[0] or "application/octet-stream"
    selected = SelectedFile(name=os.path.basename(args.path), content_type=content_type, data=data)

    async with CrystalBallClient(args.url) as client:
        await client.login(args.email, args.password)
        existing = await client.existing_levels(args.character_id)

        dialog = UploadDialog(client.uploader(args.character_id), on_change=_print_state)
        dialog.open(default_level=args.level, existing_levels=existing)
        if not dialog.select_file(selected):
            return 1

        done = await dialog.submit()
        if dialog.phase is DialogPhase.CONFIRMING:
            if not args.overwrite:
                print(f"{dialog.prompt} Re-run with --overwrite to replace it.")
                dialog.cancel_overwrite()
                return 1
            done = await dialog.confirm_overwrite()
        if done:
            print(f"\nlevel {args.level} uploaded")
        dialog.close()
        return 0 if done else 1


def main():
    parser = argparse.ArgumentParser(description="Upload a character sheet for one level.")
    parser.add_argument("character_id")
    parser.add_argument("path")
    parser.add_argument("--level", type=int, default=1)
    parser.add_argument("--url", default="http://localhost:8000")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--overwrite", action="store_true")
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
