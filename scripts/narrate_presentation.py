import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from slide_narrator import PipelineConfig, PresentationPipeline
from slide_narrator.config import (
    AssetConfig,
    OpeningClosingMode,
    QualityTier,
    TTSConfig,
    VideoConfig,
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Narrate a PowerPoint presentation from its speaker notes.")
    parser.add_argument("mode", choices=["narration", "video"], help="Produce a narration WAV or a narrated MP4.")
    parser.add_argument("file_name", type=str, help="Presentation file name inside --base-dir (e.g. deck.pptx).")
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=Path("persistent_data/generated/presentations"),
        help="Directory holding the presentation; output is written beside it.",
    )
    parser.add_argument("--gender", type=str, choices=["male", "female"], help="Voice gender (narration: female, video: male).")
    parser.add_argument("--prompt", type=str, help="Spoken text between slides (narration mode only).")
    parser.add_argument("--tts-provider", type=str, choices=["google", "openai", "edge"], default="google", help="TTS backend to use.")
    parser.add_argument("--tts-model", type=str, default="gpt-4o-mini-tts", help="Model name for OpenAI TTS provider.")
    parser.add_argument("--tts-api-base", type=str, help="Custom base URL for the TTS API (optional).")
    parser.add_argument("--tts-api-key-env", type=str, help="Environment variable containing the TTS API key.")
    parser.add_argument("--quality", type=str, choices=[q.value for q in QualityTier], default="medium", help="Slide rasterization quality.")
    parser.add_argument(
        "--opening-closing",
        type=str,
        choices=[m.value for m in OpeningClosingMode],
        default="image",
        help="Render opening/closing sections as still images or as video clips.",
    )
    parser.add_argument("--opening-image", type=Path, help="Use this image instead of generating the opening visual.")
    parser.add_argument("--closing-image", type=Path, help="Use this image instead of generating the closing visual.")
    parser.add_argument("--opening-video", type=Path, help="Opening clip (video mode of --opening-closing).")
    parser.add_argument("--closing-video", type=Path, help="Closing clip (video mode of --opening-closing).")
    parser.add_argument(
        "--assets-dir",
        type=Path,
        help="Directory with Presentation.wav, bgm001.wav and presentation_long.wav for the video soundtrack.",
    )
    parser.add_argument("--temp-dir", type=Path, help="Where per-run working directories are created.")
    parser.add_argument("--synthesis-workers", type=int, default=1, help="Parallel TTS requests per run.")
    parser.add_argument("--subtitles", action="store_true", help="Also write an SRT file beside the video.")
    parser.add_argument("--lease", action="store_true", help="Refuse to start while another run produces the same output.")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level (DEBUG, INFO, WARNING, ERROR).")
    return parser.parse_args()


def build_config(args: argparse.Namespace) -> PipelineConfig:
    tts_api_key_env = args.tts_api_key_env
    if not tts_api_key_env:
        tts_api_key_env = {"google": "GOOGLE_TTS_API_KEY", "openai": "OPENAI_API_KEY"}.get(args.tts_provider)
    tts_format = "mp3" if args.tts_provider == "edge" else "wav"
    tts = TTSConfig(
        provider=args.tts_provider,
        model=args.tts_model,
        format=tts_format,
        api_base=args.tts_api_base,
        api_key_env=tts_api_key_env,
    )
    video = VideoConfig(
        quality=QualityTier(args.quality),
        opening_closing_mode=OpeningClosingMode(args.opening_closing),
        opening_image=args.opening_image,
        closing_image=args.closing_image,
        opening_video=args.opening_video,
        closing_video=args.closing_video,
    )
    assets = AssetConfig.from_dir(args.assets_dir) if args.assets_dir else AssetConfig()
    preset = PipelineConfig.for_narration if args.mode == "narration" else PipelineConfig.for_video
    return preset(
        base_dir=args.base_dir,
        temp_root=args.temp_dir,
        tts=tts,
        video=video,
        assets=assets,
        synthesis_workers=args.synthesis_workers,
        write_subtitles=args.subtitles,
        use_lease=args.lease,
    )


def main() -> None:
    args = parse_args()
    load_dotenv()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config = build_config(args)
    pipeline = PresentationPipeline(config=config)

    if args.mode == "narration":
        result = pipeline.create_narration(args.file_name, gender=args.gender or "female", inter_slide_prompt=args.prompt)
    else:
        result = pipeline.create_video(args.file_name, gender=args.gender or "male")

    if not result.success:
        logging.error("Failed at %s: %s", result.stage, result.message)
        for key, value in result.diagnostics.items():
            logging.error("  %s: %s", key, value)
        sys.exit(1)

    logging.info("Output: %s", result.output_path)
    if result.subtitles_path:
        logging.info("Subtitles: %s", result.subtitles_path)


if __name__ == "__main__":
    main()
