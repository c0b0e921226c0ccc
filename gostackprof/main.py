import argparse
import sys
import colorama
from colorama import Fore, Style
from gostackprof import pprof
from gostackprof.errors import Error, LoadError, ProfileParseError, WriteError
from gostackprof.pclntab import load_index
from gostackprof.stacks import stack_profile

PROG = "go-stack-profile"

def error(message, hint=None):
    print(f"{PROG}: {Fore.RED}{Style.BRIGHT}error:{Fore.RESET} {message}{Style.RESET_ALL}",
          file=sys.stderr)
    if hint is not None:
        print(f"{Fore.YELLOW}{Style.BRIGHT}    | Hint:{Fore.RESET} {hint}{Style.RESET_ALL}",
              file=sys.stderr)

def info(message):
    print(f"{PROG}: {Fore.CYAN}{message}{Style.RESET_ALL}", file=sys.stderr)

def list_functions(index):
    for name in index.names():
        print(f"{name}: {index.resolve(name)}")

def rewrite(index, profile_file, output, verbose):
    try:
        data = open(profile_file, "rb").read()
    except OSError as e:
        raise ProfileParseError(f"{profile_file}: {e.strerror or e}")

    goroutines = pprof.parse(data)
    stacks = stack_profile(index, goroutines)
    if verbose:
        info(f"{profile_file}: {len(goroutines.message.sample)} samples in, "
             f"{len(stacks.message.sample)} samples out")

    if output is None:
        pprof.write(stacks, sys.stdout.buffer)
        return

    # Serialize first so that a failure leaves no partial file behind.
    data = pprof.serialize(stacks)
    try:
        with open(output, "wb") as f:
            f.write(data)
    except OSError as e:
        raise WriteError(f"{output}: {e.strerror or e}")

def main(argv=None):
    parser = argparse.ArgumentParser(prog=PROG,
        description="Estimates goroutine stack memory usage from a Go binary and a goroutine profile.")
    parser.add_argument("binary", help="The Go executable the profile was taken from.")
    parser.add_argument("profile", nargs="?",
        help="The goroutine profile (pprof format). Without it, the max SP delta "
             "of every function is listed instead.")
    parser.add_argument("-o", metavar="OUTFILE", dest="output",
        help="Write the stack profile to OUTFILE instead of stdout.")
    parser.add_argument("-v", "--verbose", action="store_true",
        help="Print progress to stderr.")
    args = parser.parse_args(argv)

    try:
        try:
            image, index = load_index(args.binary)
        except OSError as e:
            raise LoadError(f"{args.binary}: {e.strerror or e}")
        if args.verbose:
            info(f"{args.binary}: {image.format} image, {index.table.version} pclntab, "
                 f"{len(index.funcs)} functions")

        if args.profile is None:
            list_functions(index)
        else:
            rewrite(index, args.profile, args.output, args.verbose)
    except Error as e:
        error(e.message, e.hint)
        sys.exit(1)

def cli():
    colorama.init()
    main()

if __name__ == "__main__":
    cli()
