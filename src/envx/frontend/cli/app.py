"""
envx command line interface.

Usage:
    envx encrypt [KEY ...] [-w]          encrypt values (all, or only KEYs)
    envx decrypt [KEY ...] [-w]          decrypt values
    envx get [KEY ...] [--values]        print decrypted values
    envx set KEY=VALUE [KEY ...]         add or update values, encrypted by default
    envx add KEY=VALUE [KEY ...]         like set, but refuses to replace existing values
    envx unset KEY [KEY ...]             remove variables from the file
    envx run -- CMD [ARGS ...]           run CMD with the decrypted file in its environment
    envx CMD [ARGS ...]                  same as `envx run CMD ARGS`
    envx config show|list|get|getv       inspect the effective configuration
    envx config set|reset|init [-d]      edit the global (or, with -d, directory) config

Every file command takes -f/--file, -n/--name, -k/--keystore, -P/--password and
-a/--account. Without -w, encrypt and decrypt print the result and leave the
file alone.
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import subprocess
import sys
from typing import List, Optional

from envx.core.config import (
    config_report,
    directory_config_path,
    format_config_value,
    get_config_value,
    global_config_path,
    init_config,
    reset_config_value,
    set_config_value,
)
from envx.core.envfile import FORMAT_ENV, FORMAT_JSON, EnvFile
from envx.core.exceptions import EnvFileError, EnvxError
from envx.security.crypto import decrypt_value, encrypt_value

from .context import AppContext, build_context
from .logging_config import configure_logging

logger = logging.getLogger(__name__)

COMMANDS = ("encrypt", "decrypt", "get", "set", "add", "unset", "run", "config")


def _prompt_value(key: str) -> str:
    return getpass.getpass(f"Value for {key}: ")


def _output_format(args, ctx: AppContext) -> str:
    if getattr(args, "json", False):
        return FORMAT_JSON
    return ctx.config.format or FORMAT_ENV


def _context_from_args(args) -> AppContext:
    return build_context(
        file=args.file,
        name=args.name,
        keystore=args.keystore,
        password=args.password,
        account=args.account,
    )


def _emit_or_write(doc: EnvFile, ctx: AppContext, args, write: bool) -> None:
    fmt = _output_format(args, ctx)
    if write:
        doc.save(ctx.env_path, format=fmt, backup=ctx.config.backup_on_write)
        logger.info("updated %s", ctx.env_path)
    else:
        sys.stdout.write(doc.render(fmt))


def _parse_assignments(items: List[str]) -> List[tuple]:
    # KEY=VALUE, or a bare KEY whose value is prompted for
    pairs = []
    for item in items:
        name, sep, value = item.partition("=")
        name = name.strip()
        if not name:
            raise EnvFileError(f"empty variable name in {item!r}")
        if not sep:
            value = _prompt_value(name)
        pairs.append((name, value))
    return pairs


def _store_values(args, refuse_existing: bool) -> int:
    ctx = _context_from_args(args)
    doc = EnvFile.load(ctx.env_path)
    pairs = _parse_assignments(args.assignments)

    if refuse_existing:
        existing = [name for name, _ in pairs if name in doc]
        if existing:
            raise EnvFileError(f"already set in {ctx.env_path}: {', '.join(existing)} (use set to replace)")

    key = None if args.plain else ctx.load_key()
    stored = [(name, value if key is None else encrypt_value(value, key)) for name, value in pairs]

    if args.print:
        # only the new assignments, the file is not touched
        out = EnvFile()
        for name, value in stored:
            out.set(name, value)
        sys.stdout.write(out.render(_output_format(args, ctx)))
        return 0

    for name, value in stored:
        doc.set(name, value)
    _emit_or_write(doc, ctx, args, True)
    return 0


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------


def cmd_encrypt(args) -> int:
    ctx = _context_from_args(args)
    doc = EnvFile.load(ctx.env_path)
    key = ctx.load_key()
    changed = doc.update_values(lambda v: encrypt_value(v, key), args.keys or None)
    logger.info("encrypted %d value(s) in %s", len(changed), ctx.env_path)
    _emit_or_write(doc, ctx, args, args.write)
    return 0


def cmd_decrypt(args) -> int:
    ctx = _context_from_args(args)
    doc = EnvFile.load(ctx.env_path)
    key = ctx.load_key()
    changed = doc.update_values(lambda v: decrypt_value(v, key), args.keys or None)
    logger.info("decrypted %d value(s) in %s", len(changed), ctx.env_path)
    _emit_or_write(doc, ctx, args, args.write)
    return 0


def cmd_get(args) -> int:
    ctx = _context_from_args(args)
    doc = EnvFile.load(ctx.env_path)

    missing = [k for k in args.keys if k not in doc]
    if missing:
        raise EnvFileError(f"not found in {ctx.env_path}: {', '.join(missing)}")

    key = ctx.load_key()
    wanted = args.keys or doc.keys()
    values = {k: decrypt_value(doc.get(k), key) for k in wanted}

    if args.values:
        sys.stdout.write(args.separator.join(values.values()) + "\n")
    elif _output_format(args, ctx) == FORMAT_JSON:
        sys.stdout.write(json.dumps(values, indent=2, ensure_ascii=False) + "\n")
    else:
        out = EnvFile()
        for k, v in values.items():
            out.set(k, v)
        sys.stdout.write(out.render())
    return 0


def cmd_set(args) -> int:
    return _store_values(args, refuse_existing=False)


def cmd_add(args) -> int:
    return _store_values(args, refuse_existing=True)


def cmd_unset(args) -> int:
    ctx = _context_from_args(args)
    doc = EnvFile.load(ctx.env_path)

    missing = [k for k in args.keys if k not in doc]
    if missing:
        raise EnvFileError(f"not found in {ctx.env_path}: {', '.join(missing)}")

    for k in args.keys:
        doc.remove(k)
    logger.info("removed %d variable(s) from %s", len(args.keys), ctx.env_path)
    _emit_or_write(doc, ctx, args, not args.print)
    return 0


def cmd_run(args) -> int:
    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        raise EnvxError("run: missing command")

    ctx = _context_from_args(args)
    doc = EnvFile.load(ctx.env_path)
    env = dict(os.environ)
    if len(doc):
        key = ctx.load_key()
        for name, value in doc.items():
            env[name] = decrypt_value(value, key)

    logger.debug("running %s with %d variable(s) from %s", command[0], len(doc), ctx.env_path)
    try:
        completed = subprocess.run(command, env=env)
    except FileNotFoundError:
        raise EnvxError(f"executable not found: {command[0]}") from None
    return completed.returncode


# ----------------------------------------------------------------------
# Config commands
# ----------------------------------------------------------------------


def _target(args) -> str:
    return "directory" if args.directory else "global"


def _write_config_line(key: str, value, source: str) -> None:
    sys.stdout.write(f"{key}={format_config_value(value)} ({source})\n")


def _write_config_report() -> None:
    for key, entry in config_report().items():
        _write_config_line(key, entry["value"], entry["source"])


def cmd_config_show(args) -> int:
    if args.json:
        sys.stdout.write(json.dumps(config_report(), indent=2) + "\n")
    else:
        _write_config_report()
    return 0


def cmd_config_list(args) -> int:
    for label, path in (("global", global_config_path()), ("directory", directory_config_path())):
        state = "exists" if path.exists() else "not found"
        sys.stdout.write(f"{label}: {path} ({state})\n")
    sys.stdout.write("\n")
    _write_config_report()
    return 0


def cmd_config_get(args) -> int:
    if not args.keys:
        _write_config_report()
        return 0
    for key in args.keys:
        value, source = get_config_value(key)
        _write_config_line(key, value, source)
    return 0


def cmd_config_getv(args) -> int:
    if args.keys:
        values = [get_config_value(key)[0] for key in args.keys]
    else:
        values = [entry["value"] for entry in config_report().values()]
    sys.stdout.write(args.separator.join(format_config_value(v) for v in values) + "\n")
    return 0


def cmd_config_set(args) -> int:
    path = set_config_value(args.key, args.value, directory=args.directory)
    sys.stdout.write(f"set {_target(args)} config {args.key}={args.value} ({path})\n")
    return 0


def cmd_config_reset(args) -> int:
    path = reset_config_value(args.key, directory=args.directory)
    sys.stdout.write(f"reset {_target(args)} config {args.key} ({path})\n")
    return 0


def cmd_config_init(args) -> int:
    path = init_config(directory=args.directory)
    sys.stdout.write(f"initialized {_target(args)} config, defaults apply ({path})\n")
    return 0


# ----------------------------------------------------------------------
# Parser
# ----------------------------------------------------------------------


def _logging_options() -> argparse.ArgumentParser:
    verbose = argparse.ArgumentParser(add_help=False)
    verbose.add_argument("-v", "--verbose", action="count", default=0, help="more logging (-vv for debug)")
    return verbose


def _common_options() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False, parents=[_logging_options()])
    common.add_argument("-f", "--file", default=None, help="env file to use (default: .env)")
    common.add_argument("-n", "--name", default=None, help="use .env.<name> instead of .env")
    common.add_argument(
        "-k",
        "--keystore",
        default=None,
        help="key store: keyring, password or memory (default: keyring)",
    )
    common.add_argument(
        "-P",
        "--password",
        nargs="?",
        const="",
        default=None,
        help="use the password key store; without a value the password is prompted "
        "(prefer the ENVX_PASSWORD environment variable over passing it here)",
    )
    common.add_argument("-a", "--account", default=None, help="key account (default: OS user name)")
    return common


def _add_config_parser(sub) -> None:
    logging_opts = _logging_options()
    p = sub.add_parser("config", help="inspect or edit configuration")
    config_sub = p.add_subparsers(dest="config_command", metavar="ACTION")
    config_sub.required = True

    target = argparse.ArgumentParser(add_help=False, parents=[logging_opts])
    target.add_argument(
        "-d",
        "--directory",
        action="store_true",
        help="edit the directory config (.envx.yaml) instead of the global one",
    )

    show = config_sub.add_parser("show", parents=[logging_opts], help="print the effective configuration and its sources")
    show.add_argument("-j", "--json", action="store_true", help="JSON output")
    show.set_defaults(func=cmd_config_show)

    lst = config_sub.add_parser("list", parents=[logging_opts], help="print config file locations and the effective configuration")
    lst.set_defaults(func=cmd_config_list)

    get = config_sub.add_parser("get", parents=[logging_opts], help="print keys with their sources")
    get.add_argument("keys", nargs="*", help="only these keys (default: all)")
    get.set_defaults(func=cmd_config_get)

    getv = config_sub.add_parser("getv", parents=[logging_opts], help="print values only")
    getv.add_argument("keys", nargs="*", help="only these keys (default: all)")
    getv.add_argument("-s", "--separator", default="\n", help="separator (default: newline)")
    getv.set_defaults(func=cmd_config_getv)

    cset = config_sub.add_parser("set", parents=[target], help="store a value")
    cset.add_argument("key")
    cset.add_argument("value", help="lists are comma separated, booleans are true/false")
    cset.set_defaults(func=cmd_config_set)

    reset = config_sub.add_parser("reset", parents=[target], help="remove a key so lower layers apply")
    reset.add_argument("key")
    reset.set_defaults(func=cmd_config_reset)

    init = config_sub.add_parser("init", parents=[target], help="remove the config file, back to defaults")
    init.set_defaults(func=cmd_config_init)


def _build_arg_parser() -> argparse.ArgumentParser:
    common = _common_options()
    parser = argparse.ArgumentParser(
        prog="envx",
        description="Encrypt individual values in .env files in place. "
        "Without a known command, `envx CMD ARGS` runs CMD like `envx run`.",
    )
    sub = parser.add_subparsers(dest="command_name", metavar="COMMAND")
    sub.required = True

    p = sub.add_parser("encrypt", parents=[common], help="encrypt values")
    p.add_argument("keys", nargs="*", help="only these variables (default: all)")
    p.add_argument("-w", "--write", action="store_true", help="overwrite the file instead of printing")
    p.add_argument("-j", "--json", action="store_true", help="JSON output")
    p.set_defaults(func=cmd_encrypt)

    p = sub.add_parser("decrypt", parents=[common], help="decrypt values")
    p.add_argument("keys", nargs="*", help="only these variables (default: all)")
    p.add_argument("-w", "--write", action="store_true", help="overwrite the file instead of printing")
    p.add_argument("-j", "--json", action="store_true", help="JSON output")
    p.set_defaults(func=cmd_decrypt)

    p = sub.add_parser("get", parents=[common], help="print decrypted values")
    p.add_argument("keys", nargs="*", help="only these variables (default: all)")
    p.add_argument("--values", action="store_true", help="print values only")
    p.add_argument("-s", "--separator", default="\n", help="separator for --values (default: newline)")
    p.add_argument("-j", "--json", action="store_true", help="JSON output")
    p.set_defaults(func=cmd_get)

    for name, func, help_text in (
        ("set", cmd_set, "add or update values"),
        ("add", cmd_add, "add values, failing if a variable already exists"),
    ):
        p = sub.add_parser(name, parents=[common], help=help_text)
        p.add_argument("assignments", nargs="+", metavar="KEY[=VALUE]", help="omit =VALUE to be prompted")
        p.add_argument("--plain", action="store_true", help="store the values unencrypted")
        p.add_argument("-p", "--print", action="store_true", help="print the new assignments instead of writing")
        p.add_argument("-j", "--json", action="store_true", help="JSON output")
        p.set_defaults(func=func)

    p = sub.add_parser("unset", parents=[common], help="remove variables")
    p.add_argument("keys", nargs="+", metavar="KEY")
    p.add_argument("-p", "--print", action="store_true", help="print the result instead of writing")
    p.add_argument("-j", "--json", action="store_true", help="JSON output")
    p.set_defaults(func=cmd_unset)

    p = sub.add_parser("run", parents=[common], help="run a command with decrypted values")
    p.add_argument("command", nargs=argparse.REMAINDER, help="command and arguments, after --")
    p.set_defaults(func=cmd_run)

    _add_config_parser(sub)
    return parser


def _with_default_command(argv: List[str]) -> List[str]:
    # anything that is not a known command (or top-level help) is a command to run
    if argv and argv[0] not in COMMANDS and argv[0] not in ("-h", "--help"):
        return ["run", *argv]
    return argv


def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = _build_arg_parser()
    args = parser.parse_args(_with_default_command(argv))

    verbose = getattr(args, "verbose", 0)
    configure_logging(logging.DEBUG if verbose > 1 else logging.INFO if verbose else logging.WARNING)

    try:
        return args.func(args)
    except (EnvxError, OSError, ValueError) as e:
        sys.stderr.write(f"envx: error: {e}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
