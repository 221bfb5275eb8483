#!/usr/bin/env python3
###############################################################################
#                                                                             #
#    This program is free software: you can redistribute it and/or modify     #
#    it under the terms of the GNU General Public License as published by     #
#    the Free Software Foundation, either version 3 of the License, or        #
#    (at your option) any later version.                                      #
#                                                                             #
#    This program is distributed in the hope that it will be useful,          #
#    but WITHOUT ANY WARRANTY; without even the implied warranty of           #
#    MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the            #
#    GNU General Public License for more details.                             #
#                                                                             #
#    You should have received a copy of the GNU General Public License        #
#    along with this program. If not, see <http://www.gnu.org/licenses/>.     #
#                                                                             #
###############################################################################

import sys

from phagecorr import __author__, __copyright__, __version__
from phagecorr.cli import parse_cli

def print_help():
    print('''\

  phagecorr v%s

  Starters:
    fill   -> Fill missing and "not classified" ranks of a taxonomy table.
    format -> Convert per-rank counts to relative abundance matrices.

  Main dish:
    correlate -> Spearman correlations between bacteria and phage for every pair of ranks and every cohort.

  Use: phagecorr <command> -h for command specific help
    ''' % __version__)


def main():
    if len(sys.argv) == 1:
        print_help()
        sys.exit(0)
    elif sys.argv[1] in {'-v', '--v', '-version', '--version'}:
        print(f"phagecorr: version {__version__} {__copyright__} {__author__}")
        sys.exit(0)
    elif sys.argv[1] in {'-h', '--h', '-help', '--help'}:
        print_help()
        sys.exit(0)
    elif sys.argv[1] not in {'fill', 'format', 'correlate'}:
        print(f"program not on the menu, choose from the options listed below ")
        print_help()
        sys.exit(0)
    else:
        parse_cli()


if __name__ == "__main__":
    main()
