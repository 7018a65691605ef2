# AI Drawing Studio - image and video generation client
# Copyright (C) 2025 brokechubb
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

import argparse
import asyncio
import base64
import mimetypes
import sys
import uuid
from typing import List, Optional

from pydantic import ValidationError

from ai.exceptions.generation_exceptions import GenerationError, MissingInputError
from ai.models.generation_models import (
    AspectRatio,
    BackendFamily,
    CustomModel,
    GenerationRequest,
    ModelTag,
    StreamCallbacks,
)
from config import LOG_FILE_PATH, LOG_LEVEL, LOG_TO_FILE
from utils.dependency_container import AppDependencies, init_dependencies
from utils.error_handler import handle_error
from utils.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def file_to_data_url(path: str) -> str:
    """Read an image file into a base64 data URL"""
    mime, _ = mimetypes.guess_type(path)
    with open(path, "rb") as f:
        encoded = base64.b64encode(f.read()).decode("ascii")
    return f"data:{mime or 'image/png'};base64,{encoded}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="AI Drawing Studio")
    commands = parser.add_subparsers(dest="command", required=True)

    gen = commands.add_parser("generate", help="Generate images or video from a prompt")
    gen.add_argument("prompt", help="Text prompt")
    gen.add_argument("--model", default="fal-ai/flux-pro", help="Model value or catalog id")
    gen.add_argument("--family", choices=[f.value for f in BackendFamily],
                     help="Backend family (defaults to the catalog entry's)")
    gen.add_argument("--tag", choices=[t.value for t in ModelTag],
                     help="Model modality (defaults to the catalog entry's)")
    gen.add_argument("--image", action="append", default=[], help="Source image file (up to 4)")
    gen.add_argument("--mask", help="Mask image file for edits")
    gen.add_argument("--aspect-ratio", default=AspectRatio.SQUARE.value,
                     choices=[a.value for a in AspectRatio])
    gen.add_argument("-n", type=int, default=1, help="Number of images (1-4)")
    gen.add_argument("--quality", help="Output quality")
    gen.add_argument("--size", help="Output size for edits")
    gen.add_argument("--duration", type=int, choices=[5, 10], help="Video duration in seconds")
    gen.add_argument("--no-safety-checker", action="store_true", help="Disable the FAL safety checker")
    gen.add_argument("--safety-tolerance", default="2", choices=[str(i) for i in range(1, 7)])

    cfg = commands.add_parser("config", help="Manage the stored API configuration")
    cfg_commands = cfg.add_subparsers(dest="action", required=True)
    cfg_set = cfg_commands.add_parser("set")
    cfg_set.add_argument("key", help="API key")
    cfg_set.add_argument("--base-url", default="", help="OpenAI-compatible base URL (end with '#' to use as-is)")
    cfg_commands.add_parser("show")
    cfg_commands.add_parser("clear")

    hist = commands.add_parser("history", help="Manage generation history")
    hist_commands = hist.add_subparsers(dest="action", required=True)
    hist_commands.add_parser("list")
    hist_remove = hist_commands.add_parser("remove")
    hist_remove.add_argument("id")
    hist_commands.add_parser("clear")

    models = commands.add_parser("models", help="Manage the model catalog")
    model_commands = models.add_subparsers(dest="action", required=True)
    model_commands.add_parser("list")
    model_add = model_commands.add_parser("add")
    model_add.add_argument("name")
    model_add.add_argument("value")
    model_add.add_argument("--family", required=True, choices=[f.value for f in BackendFamily])
    model_add.add_argument("--tag", choices=[t.value for t in ModelTag])
    model_remove = model_commands.add_parser("remove")
    model_remove.add_argument("id")

    return parser


def build_request(args, deps: AppDependencies) -> GenerationRequest:
    """Resolve the model against the catalog and read image files"""
    catalog_entry = deps.storage.find_model(args.model)
    model_value = catalog_entry.value if catalog_entry else args.model

    family = args.family or (catalog_entry.type.value if catalog_entry else None)
    if family is None:
        raise MissingInputError(f"Unknown model '{args.model}', pass --family")
    tag = args.tag or (catalog_entry.tag.value if catalog_entry and catalog_entry.tag else None)

    images = [file_to_data_url(path) for path in args.image]
    return GenerationRequest(
        prompt=args.prompt,
        family=family,
        model=model_value,
        model_tag=tag,
        image_conditioned=bool(images),
        source_images=images,
        mask=file_to_data_url(args.mask) if args.mask else None,
        aspect_ratio=args.aspect_ratio,
        n=args.n,
        quality=args.quality,
        size=args.size,
        enable_safety_checker=not args.no_safety_checker,
        safety_tolerance=args.safety_tolerance,
        duration=args.duration,
    )


async def run_generate(args, deps: AppDependencies) -> int:
    request = build_request(args, deps)
    errors: List[Exception] = []

    def on_message(text: str) -> None:
        sys.stdout.write(text)
        sys.stdout.flush()

    def on_complete(url: str) -> None:
        sys.stdout.write("\n")

    callbacks = StreamCallbacks(on_message=on_message, on_complete=on_complete, on_error=errors.append)
    result = await deps.orchestrator.generate(request, callbacks)

    if errors:
        print(handle_error(errors[0], {"model": request.model}).user_message, file=sys.stderr)
        return 1

    for url in result.urls:
        print(url)
    return 0 if result.succeeded else 1


def run_config(args, deps: AppDependencies) -> int:
    if args.action == "set":
        api_config = deps.storage.set_api_config(args.key, args.base_url)
        print(f"API configuration saved (base URL: {api_config.base_url or 'none'})")
    elif args.action == "show":
        api_config = deps.storage.get_api_config()
        if api_config is None:
            print("No API configuration stored")
            return 1
        masked = api_config.key[:4] + "..." if len(api_config.key) > 4 else "***"
        print(f"key: {masked}\nbase_url: {api_config.base_url}\ncreated_at: {api_config.created_at}")
    else:
        deps.storage.remove_api_config()
        print("API configuration cleared")
    return 0


def run_history(args, deps: AppDependencies) -> int:
    if args.action == "list":
        for record in deps.storage.get_history():
            print(f"{record.id}  {record.created_at}  {record.model}  {record.aspect_ratio}  {record.url}")
            print(f"    {record.prompt}")
    elif args.action == "remove":
        deps.storage.remove_from_history(args.id)
    else:
        deps.storage.clear_history()
    return 0


def run_models(args, deps: AppDependencies) -> int:
    if args.action == "list":
        for model in deps.storage.get_custom_models():
            tag = model.tag.value if model.tag else "-"
            default = " (default)" if model.is_default else ""
            print(f"{model.id}  {model.name}  {model.value}  {model.type.value}  {tag}{default}")
    elif args.action == "add":
        model = CustomModel(
            id=str(uuid.uuid4()),
            name=args.name,
            value=args.value,
            type=args.family,
            tag=args.tag,
        )
        deps.storage.add_custom_model(model)
        print(f"Added model {model.id}")
    else:
        deps.storage.remove_custom_model(args.id)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point"""
    setup_logging(LOG_LEVEL, log_to_file=LOG_TO_FILE, log_file_path=LOG_FILE_PATH)
    args = build_parser().parse_args(argv)
    deps = init_dependencies()

    try:
        if args.command == "generate":
            return asyncio.run(run_generate(args, deps))
        if args.command == "config":
            return run_config(args, deps)
        if args.command == "history":
            return run_history(args, deps)
        return run_models(args, deps)
    except KeyboardInterrupt:
        logger.info("Generation cancelled by user")
        return 130
    except (GenerationError, ValidationError, OSError) as e:
        print(handle_error(e, {"command": args.command}).user_message, file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
