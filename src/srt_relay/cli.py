"""Command-line interface for SRT Relay."""

from __future__ import annotations

import asyncio
import argparse
import logging
import signal
import sys
from pathlib import Path

from tqdm import tqdm

from .config import TranslatorConfig, DEFAULT_MODEL, DEFAULT_TO_LANGUAGE, DEFAULT_BATCH_SIZES
from .controller import JobController, JobOutcome, ResumePointError
from .parser import SrtParseError, save_srt_text, validate_srt_file
from .progress import (
    JobProgress,
    get_progress_file,
    save_progress,
    load_progress,
    delete_progress,
)
from .settings import JsonSettingsStore, DEFAULT_SETTINGS_FILE


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S"
    )
    # httpx 每个请求都会打 INFO 日志
    logging.getLogger("httpx").setLevel(logging.WARNING)


def parse_arguments(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Streaming LLM subtitle translator with stop and resume",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s video.srt                       # Translate to the default language
  %(prog)s video.srt -o output.srt --to German
  %(prog)s video.srt --batch-sizes 5 20    # Variable batch size range
  %(prog)s video.srt --resume              # Continue an interrupted run
        """
    )

    # Positional arguments
    parser.add_argument("input_path", help="Input SRT file path")
    parser.add_argument("output_path", nargs='?', default=None, help="Output SRT file path")
    parser.add_argument("-o", "--output", dest="output_option", default=None, help="Output SRT file path")

    # Language options
    parser.add_argument("--from", dest="from_language", default="", help="Source language (default: auto)")
    parser.add_argument("--to", dest="to_language", default=DEFAULT_TO_LANGUAGE, help="Target language")
    parser.add_argument("--system-instruction", default="", help="Override the preset system instruction")

    # API options
    parser.add_argument("--api-key", help="API key (or set OPENAI_API_KEY)")
    parser.add_argument("--base-url", default=None, help="Custom OpenAI-compatible endpoint")
    parser.add_argument("--model", dest="model_name", default=DEFAULT_MODEL)
    parser.add_argument("--temperature", type=float, default=0.0)
    parser.add_argument("--batch-sizes", type=int, nargs='+', default=list(DEFAULT_BATCH_SIZES),
                        metavar="N", help="Batch size, or min and max batch size")
    parser.add_argument("--no-moderator", action="store_true", help="Skip the moderation check")
    parser.add_argument("--no-structured", action="store_true", help="Use numbered-line mode instead of JSON")
    parser.add_argument("--rate-limit", type=int, default=None, help="Requests per minute")
    parser.add_argument("--settings", default=None, help=f"Settings file (default: {DEFAULT_SETTINGS_FILE})")

    # Progress
    parser.add_argument("--resume", action="store_true", help="Resume from saved progress")
    parser.add_argument("--no-progress", action="store_true", help="Disable progress saving")

    # Misc
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    return parser.parse_args(argv)


def _install_stop_handler(controller: JobController) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, controller.stop)
    except (NotImplementedError, RuntimeError):
        # Windows 事件循环不支持，Ctrl-C 退回 KeyboardInterrupt
        pass


def _print_usage(controller: JobController) -> None:
    usage = controller.usage
    if usage is None:
        return
    print(f"Tokens: {usage.used_tokens} ${usage.used_tokens_pricing}")
    if usage.wasted_tokens > 0:
        print(f"Wasted: {usage.wasted_tokens} ${usage.wasted_tokens_pricing} {usage.wasted_percent}")
    if usage.cached_tokens > 0:
        print(f"Cached: {usage.cached_tokens}")
    print(f"{usage.rate} TPM {controller.rpm} RPM")


async def main_async(args: argparse.Namespace, engine_factory=None) -> int:
    """Main async workflow."""
    logger = logging.getLogger(__name__)

    store = JsonSettingsStore(Path(args.settings).expanduser()) if args.settings else JsonSettingsStore()
    config = TranslatorConfig.from_args(args, store)

    # 验证配置
    error = config.validate()
    if error:
        logger.error(error)
        return 1

    # 验证输入文件
    in_path = Path(args.input_path).expanduser().resolve()
    error = validate_srt_file(in_path)
    if error:
        logger.error(error)
        return 1

    controller = JobController(store, engine_factory=engine_factory, config=config)

    logger.info(f"Reading: {in_path}")
    try:
        controller.load_document(in_path.read_text(encoding="utf-8-sig"))
    except SrtParseError as e:
        logger.error(f"Invalid subtitle file: {e}")
        return 1

    if controller.total_lines == 0:
        logger.error("No valid subtitle entries found")
        return 1

    # 进度管理
    progress_path = get_progress_file(in_path) if not args.no_progress else None

    if args.resume and progress_path:
        progress = load_progress(progress_path)
        if progress:
            try:
                controller.restore(progress.outputs, progress.document_id)
                logger.info(f"Loaded progress: {progress.completion_rate:.0%} complete")
            except ResumePointError as e:
                logger.warning(f"Ignoring saved progress: {e}")
        else:
            logger.info("No previous progress found, starting fresh")

    bar = tqdm(total=controller.total_lines, initial=controller.progress_index, desc="Translating", unit="line")

    def on_change(ctrl: JobController) -> None:
        done = ctrl.finalized_count
        if done != bar.n:
            bar.n = done
            bar.set_postfix(rpm=ctrl.rpm, refresh=False)
            bar.refresh()

    controller.add_listener(on_change)
    _install_stop_handler(controller)

    try:
        await controller.start(controller.progress_index)
    finally:
        bar.close()

    # 保存结果（包括部分完成的结果）
    output = args.output_option or args.output_path
    out_path = Path(output) if output else in_path.with_name(f"translated_{in_path.name}")
    save_srt_text(controller.exportable_text, out_path)
    logger.info(f"Saved {len(controller.outputs)}/{controller.total_lines} translated lines to {out_path}")

    _print_usage(controller)

    if controller.last_outcome is JobOutcome.COMPLETED:
        if progress_path:
            delete_progress(progress_path)
        return 0

    if progress_path and controller.can_resume:
        progress = JobProgress.create(str(in_path), controller.document_id, controller.total_lines)
        progress.update(controller.outputs)
        if save_progress(progress, progress_path):
            logger.info(f"Progress saved. Resume with: --resume ({controller.progress_index}/{controller.total_lines})")

    if controller.last_outcome is JobOutcome.FAILED:
        logger.error(f"Translation failed: {controller.last_error}")
        return 1

    return 130


def main() -> None:
    """CLI entry point."""
    args = parse_arguments()
    setup_logging(args.verbose)

    try:
        exit_code = asyncio.run(main_async(args))
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        sys.exit(130)
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
