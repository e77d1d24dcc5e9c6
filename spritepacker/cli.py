import argparse
import logging
import sys
from typing import List, Optional

from .errors import SpritePackerError
from .engine import SpriteEngine
from .grouping import KEY_FUNCTIONS
from .settings import DEFAULT_SETTINGS_PATH, Settings

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT,
                        handlers=handlers)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="spritepacker",
                                     description="Find drifted duplicate sprites and pack sprites into atlases.")
    parser.add_argument("--config", default=DEFAULT_SETTINGS_PATH, help="Settings file (JSON)")
    parser.add_argument("--save-config", action="store_true", help="Store the effective settings in --config")
    parser.add_argument("--grouping", choices=sorted(KEY_FUNCTIONS), help="Duplicate grouping convention")
    parser.add_argument("--workers", type=int, help="Threads used for loading and hashing")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--log-file", help="Also write the log to this file")
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Report duplicate groups whose sprites differ")
    check.add_argument("root", nargs="?", help="Sprites folder")

    resolve = sub.add_parser("resolve", help="Overwrite a group's duplicates with one member")
    resolve.add_argument("root", help="Sprites folder")
    resolve.add_argument("group", help="Group key as printed by check")
    resolve.add_argument("member", help="Relative path of the sprite to keep")

    pack = sub.add_parser("pack", help="Pack distinct sprites into an atlas and placement map")
    pack.add_argument("root", help="Sprites folder")
    pack.add_argument("output", help="Atlas image path, the map is written next to it as .json")
    pack.add_argument("--max-width", type=int)
    pack.add_argument("--max-height", type=int)
    pack.add_argument("--padding", type=int)
    pack.add_argument("--tight", action="store_true", help="Trim the atlas instead of using powers of two")
    pack.add_argument("--multiple", action="store_true", help="Split into several atlases when needed")
    pack.add_argument("--merge-identical", action="store_true", help="Share rectangles between identical groups")
    pack.add_argument("--collection", help="Pack only the sprites under this top-level folder")

    unpack = sub.add_parser("unpack", help="Cut sprites back out of packed atlases")
    unpack.add_argument("map", help="Placement map (.json)")
    unpack.add_argument("output_dir", help="Folder receiving the sprites")
    return parser


def load_settings(args) -> Settings:
    settings = Settings.load(args.config)
    overrides = {
        'grouping': args.grouping,
        'workers': args.workers,
        'log_level': args.log_level,
        'max_atlas_width': getattr(args, 'max_width', None),
        'max_atlas_height': getattr(args, 'max_height', None),
        'padding': getattr(args, 'padding', None),
    }
    data = settings.to_dict()
    data.update({k: v for k, v in overrides.items() if v is not None})
    if getattr(args, 'tight', False):
        data['power_of_two'] = False
    if getattr(args, 'multiple', False):
        data['allow_multiple_atlases'] = True
    if getattr(args, 'merge_identical', False):
        data['merge_identical'] = True
    root = getattr(args, 'root', None)
    if root:
        data['sprites_path'] = root
    return Settings.from_dict(data)


def run_check(engine: SpriteEngine, args) -> int:
    engine.scan()
    changed = engine.changed_groups()
    for key, sprites in changed.items():
        group = engine.group(key)
        print(f"{key}: canonical {group.canonical.name}")
        for sprite in sprites:
            print(f"  changed {sprite.name}")
    print(f"{len(engine.groups)} groups, {len(changed)} with changes")
    return 1 if changed else 0


def run_resolve(engine: SpriteEngine, args) -> int:
    engine.scan()
    engine.check()
    rewritten = engine.replace_duplicates(args.group, args.member)
    for sprite in rewritten:
        print(f"replaced {sprite.name}")
    return 0


def run_pack(engine: SpriteEngine, args) -> int:
    engine.scan()
    changed = engine.changed_groups()
    if changed:
        logger.warning(f"{len(changed)} groups have drifted duplicates, packing canonical sprites only")
    atlases = engine.pack(args.output, collection=args.collection)
    for atlas in atlases:
        print(f"atlas {atlas.id}: {atlas.width}x{atlas.height}, {len(atlas.placements)} sprites")
    return 0


def run_unpack(engine: SpriteEngine, args) -> int:
    written = engine.unpack(args.map, args.output_dir)
    print(f"unpacked {len(written)} sprites")
    return 0


COMMANDS = {
    'check': run_check,
    'resolve': run_resolve,
    'pack': run_pack,
    'unpack': run_unpack,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = load_settings(args)
    except SpritePackerError as e:
        setup_logging("INFO", args.log_file)
        logger.error(str(e))
        return 1
    setup_logging(settings.log_level, args.log_file)

    if args.save_config:
        settings.save(args.config)

    engine = SpriteEngine(settings)
    try:
        return COMMANDS[args.command](engine, args)
    except SpritePackerError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
