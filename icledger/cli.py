#!/usr/bin/env python
#
# (c) Copyright 2021 by Coinkite Inc. This file is covered by license found in COPYING-CC.
#
# To use this, install with:
#
#   pip install --editable '.[cli]'
#
# That will create the command "icledger" in your path.
#
#
import click, sys, logging
from icledger.utils import B2A
from icledger.constants import *
from icledger.exceptions import LedgerError
from icledger import __version__

# dict of options that apply to all commands
global global_opts
global_opts = dict()

# Cleanup display (supress traceback) for user-feedback exceptions
_sys_excepthook = sys.excepthook
def my_hook(ty, val, tb):
    if issubclass(ty, LedgerError):
        print("FATAL: %s" % val, file=sys.stderr)
    else:
        return _sys_excepthook(ty, val, tb)
sys.excepthook=my_hook

def fail(msg):
    # show message and stop
    click.echo(f"FAILURE: {msg}", err=True)
    sys.exit(1)

def get_identity(**kws):
    # Connect to device, build identity for selected principal index
    from icledger.identity import LedgerIdentity
    return LedgerIdentity.for_index(global_opts.get('index', 0), **kws)

# Accept any prefix of a command name.
#
# from <https://click.palletsprojects.com/en/8.0.x/advanced/?#command-aliases>
class AliasedGroup(click.Group):
    def get_command(self, ctx, cmd_name):
        rv = click.Group.get_command(self, ctx, cmd_name)
        if rv is not None:
            return rv
        matches = [x for x in self.list_commands(ctx)
                   if x.startswith(cmd_name)]
        if not matches:
            return None
        elif len(matches) == 1:
            return click.Group.get_command(self, ctx, matches[0])
        ctx.fail(f"Abiguous command. Pick one of: {' | '.join(sorted(matches))}")

    def resolve_command(self, ctx, args):
        # always return the full command name
        _, cmd, args = super().resolve_command(ctx, args)
        return cmd.name, cmd, args


#
# Options we want for all commands
#
@click.group(cls=AliasedGroup)
@click.option('--index', '-i', type=click.IntRange(MIN_PATH_INDEX, MAX_PATH_INDEX), default=0,
                    metavar="N", help="Principal index: uses path m/44'/223'/0'/0/N")
@click.option('--network', '-n', default=DEFAULT_NETWORK, metavar="URL",
                    help="IC network (boundary node) to talk to")
@click.option('--verbose', '-v', is_flag=True, 
                    help="Show traffic with device.")
@click.option('--pdb', is_flag=True, 
                    help="Prepare patient for surgery to remove bugs.")
@click.version_option(version=__version__)
def main(**kws):
    '''
    Interact with the Internet Computer app on a Ledger device.

    You can use "ver", or "v" for "version": any distinct prefix for all commands.
    '''
    # implement PDB option here
    if kws.pop('pdb', False):
        import pdb
        def doit(ex_cls, ex, tb):
            pdb.pm()
        sys.excepthook = doit

    if kws.get('verbose'):
        import icledger.transport as tt
        tt.VERBOSE = True
        logging.basicConfig(level=logging.DEBUG)

    # global options, mostly not considered here
    global global_opts
    global_opts.update(kws)

@main.command('info')
def show_info():
    "Show principal and public key for selected index."
    ident = get_identity()

    click.echo('Path: %s' % ident.derive_path)
    click.echo('Principal: %s' % ident.get_principal())
    click.echo('Public key (DER): %s' % B2A(ident.get_public_key()))

@main.command('show')
def show_on_device():
    "Display address and public key on device screen, for visual comparison."
    ident = get_identity()
    click.echo('Principal: %s' % ident.get_principal())
    click.echo('Confirm on device...')
    ident.show_address_and_pubkey_on_device()

@main.command('version')
def get_version():
    "Get the version of the Internet Computer app on the device"
    ident = get_identity()
    v = ident.get_version()

    click.echo(str(v) + (' (test mode)' if v.test_mode else ''))

@main.command('check-version')
@click.argument('min_version')
def check_version(min_version):
    "Fail unless device app is at least MIN_VERSION"
    from icledger.version import assert_min_version
    ident = get_identity()
    assert_min_version(ident, min_version)
    click.echo('OK')

@main.command('tokens')
def list_tokens():
    "List tokens the device app knows how to display"
    ident = get_identity()

    toks = ident.get_supported_tokens()
    if not toks:
        click.echo("(none)")
    for t in toks:
        click.echo('%-8s %2d  %s' % (t.symbol, t.decimals, t.canister_id))

@main.command('consent')
@click.argument('canister_id')
@click.argument('method')
@click.argument('arg_hex', required=False, default='4449444c0000')
@click.option('--language', '-l', default='en', help="Preferred language")
@click.option('--generic', '-g', is_flag=True, help="Ask for plain text form, not fields")
def preview_consent(canister_id, method, arg_hex, language, generic):
    '''Show the (certified) consent message for a call, without signing.

    ARG_HEX is the Candid-encoded argument, in hex. Default: no arguments.
    '''
    from icledger.consent import ConsentVerifier
    from icledger.icrc21 import DISPLAY_FIELDS, DISPLAY_GENERIC

    try:
        arg = bytes.fromhex(arg_hex)
    except ValueError:
        fail("ARG_HEX must be hex")

    cv = ConsentVerifier.create(host=global_opts.get('network'), language=language,
                                display_mode=(DISPLAY_GENERIC if generic else DISPLAY_FIELDS))
    art = cv.obtain_consent(canister_id, method, arg)

    for ln in art.message.lines():
        click.echo(ln)

if __name__ == '__main__':
    main()

# EOF
