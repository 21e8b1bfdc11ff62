#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# vim: set fileencoding=utf-8

"""
Copyright (c) 2008-2013 Janne Blomqvist

Permission is hereby granted, free of charge, to any person obtaining a copy of
this software and associated documentation files (the "Software"), to deal in
the Software without restriction, including without limitation the rights to
use, copy, modify, merge, publish, distribute, sublicense, and/or sell copies of
the Software, and to permit persons to whom the Software is furnished to do so,
subject to the following conditions:

The above copyright notice and this permission notice shall be included in all
copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY, FITNESS
FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR
COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER
IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN
CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.
"""

"""Print out user disk quotas as colored usage bars.

The NFS quotas come from 'quota -s -u USER', the Lustre quotas from
'lfs quota -h -u USER MOUNT', once per Lustre mount point.

The program tries to read a configuration file from the following locations

/etc/userquota.cfg
~/.config/userquota.cfg
userquota.cfg

In the config file, you can put a list of directories, and environment
variables pointing to directories, which must be visited (i.e. make
the automounter mount them if they are unmounted). Multiple entries
can be present, separated by commas. An example config file section:

[visit]
envs=HOME, WRKDIR
dirs=/mnt/scratch

The quota commands and the Lustre mount points can be changed too.
Mounts in conditional_mounts are only shown if the user directory
(user_dir, relative to the mount) exists:

[commands]
quota=/usr/bin/quota
lfs=/usr/bin/lfs

[lustre]
mounts=/mnt/scratch, /mnt/fastscratch
conditional_mounts=/mnt/fastscratch2
user_dir=users/{user}

Default quota policies are given per mount point prefix, one section
each:

[default:/export/data]
space_soft=2500G
space_hard=3000G
files_soft=300k
files_hard=500k
"""

import logging
import os
import re
import subprocess
import sys
from collections import namedtuple
from optparse import OptionParser

import colorful as cf

__version__ = '2.0'

log = logging.getLogger(__name__)

BAR_WIDTH = 50
RULE = '═' * 63

PALETTE = {
    'green': '#08a91e',
    'orange': '#ff8700',
    'red': '#ff0000',
    'yellow': '#ffd700',
    'blue': '#2e54ff',
    'cyan': '#00afaf',
}
cf.update_palette(PALETTE)

SEVERITY_COLORS = {'normal': 'green', 'warning': 'orange', 'critical': 'red'}

DEFAULT_LABELS = {
    'both-default': 'default space and file limits',
    'default-space-only': 'default space limits, custom file limits',
    'default-files-only': 'custom space limits, default file limits',
    'custom': 'custom limits',
}

# Space values are in megabytes, file values are counts.
QuotaRecord = namedtuple('QuotaRecord', [
    'mount_point',
    'used_space', 'soft_space_limit', 'hard_space_limit', 'space_grace',
    'used_files', 'soft_file_limit', 'hard_file_limit', 'files_grace'])

# Raw columns of one quota data line, in output order
QuotaFields = namedtuple('QuotaFields', [
    'used', 'soft', 'hard', 'grace',
    'files', 'files_soft', 'files_hard', 'files_grace'])

DefaultPolicy = namedtuple('DefaultPolicy', [
    'prefix', 'soft_space', 'hard_space', 'soft_files', 'hard_files'])

QuotaUsage = namedtuple('QuotaUsage', [
    'used', 'soft', 'hard', 'pct_soft', 'pct_hard', 'severity', 'grace'])

Config = namedtuple('Config', [
    'visit_dirs', 'quota_bin', 'lfs_bin', 'lustre_mounts',
    'conditional_mounts', 'user_dir', 'policies'])


_SPACE_RE = re.compile(r'^([0-9]*\.?[0-9]+)([kKmMgGtTpP]?)$')
_COUNT_RE = re.compile(r'^([0-9]*\.?[0-9]+)([kKmM]?)$')

# No unit means 1k blocks
_SPACE_MB = {'': 1. / 1024, 'K': 1. / 1024, 'M': 1., 'G': 1024.,
             'T': 1024. ** 2, 'P': 1024. ** 3}
_COUNT_MULT = {'': 1, 'K': 1000, 'M': 1000000}


def strip_markers(val):
    """Remove the '*' / '+' over quota markers and brackets from a value"""
    for c in '*+[]':
        val = val.replace(c, '')
    return val.strip()


def parse_space(val):
    """Convert a size like '2.5T' or '512M' to megabytes.

    Anything that doesn't look like a size is 0.
    """
    if not val:
        return 0.
    m = _SPACE_RE.match(strip_markers(val))
    if not m:
        return 0.
    return float(m.group(1)) * _SPACE_MB[m.group(2).upper()]


def parse_count(val):
    """Convert a file count like '300k' or '1.2M' to an int"""
    if not val:
        return 0
    m = _COUNT_RE.match(strip_markers(val))
    if not m:
        return 0
    return int(round(float(m.group(1)) * _COUNT_MULT[m.group(2).upper()]))


def normalize_grace(val):
    """'-' and empty grace columns mean no grace period was recorded."""
    if val is None:
        return None
    val = val.strip()
    if val in ('', '-'):
        return None
    return val


DEFAULT_POLICIES = (
    DefaultPolicy('/export/data', parse_space('2500G'), parse_space('3000G'),
                  parse_count('300k'), parse_count('500k')),
)


def make_record(mount_point, fields):
    return QuotaRecord(mount_point,
                       parse_space(fields.used),
                       parse_space(fields.soft),
                       parse_space(fields.hard),
                       normalize_grace(fields.grace),
                       parse_count(fields.files),
                       parse_count(fields.files_soft),
                       parse_count(fields.files_hard),
                       normalize_grace(fields.files_grace))


# A files count, possibly over quota: '1234', '120k', '2M*'
_FILES_FIELD = re.compile(r'^[0-9]+[kKmM]?\*?$')

# '/export/home' or 'host:/export/home'
_NFS_FS = re.compile(r'^(/|[^\s:/]+:/)')


def split_nfs_fields(tokens):
    """Resolve the data columns of a 'quota' line to a QuotaFields tuple.

    quota leaves out the space grace column when no grace period
    applies, so the files columns start either at index 3 or at index
    4. A files count at index 3 means there is no space grace column.
    """
    tokens = list(tokens) + [None] * len(QuotaFields._fields)
    if tokens[3] is not None and _FILES_FIELD.match(tokens[3]):
        used, soft, hard, files, files_soft, files_hard, files_grace = tokens[:7]
        return QuotaFields(used, soft, hard, None,
                           files, files_soft, files_hard, files_grace)
    return QuotaFields(*tokens[:8])


def parse_nfs_quota(output):
    """Parse the output of 'quota -s -u USER'.

    Returns a list of QuotaRecords in the order the file systems were
    listed. The file system is either on a line of its own with the
    data on the following indented line, or on the same line as the
    data.
    """
    records = []
    fs = None
    for line in output.splitlines():
        if not line.strip() or line.startswith('Disk quotas for') \
                or line.split()[:1] == ['Filesystem']:
            continue
        ls = line.split()
        if not line[0].isspace():
            fs = None
            if not _NFS_FS.match(line):
                log.debug('Ignoring quota line %r', line)
            elif len(ls) == 1:
                fs = ls[0]
            elif len(ls) >= 4:
                records.append(make_record(ls[0], split_nfs_fields(ls[1:])))
        elif fs is not None:
            if len(ls) >= 3:
                records.append(make_record(fs, split_nfs_fields(ls)))
            else:
                log.debug('No quota data for %s', fs)
            fs = None
    return records


def parse_lustre_quota(output, mount):
    """Parse the output of 'lfs quota -h -u USER MOUNT'.

    The data columns follow the mount point on the same line, or if
    the mount point name is long, on the next line. Returns None if
    no data line is found.
    """
    lines = output.splitlines()
    for line in lines:
        ls = line.split()
        if len(ls) >= 5 and ls[0] == mount:
            return make_record(mount, _lustre_fields(ls[1:]))
    for ii, line in enumerate(lines[:-1]):
        if line.strip() == mount:
            ls = lines[ii + 1].split()
            if len(ls) >= 4 and ls[0] != mount:
                return make_record(mount, _lustre_fields(ls))
    log.debug('No quota data line for %s', mount)
    return None


def _lustre_fields(tokens):
    tokens = list(tokens) + [None] * len(QuotaFields._fields)
    return QuotaFields(*tokens[:8])


def match_policy(mount_point, policies):
    """Find the policy with the longest prefix matching the mount point"""
    path = mount_point
    if ':' in path:
        path = path.split(':', 1)[1]
    best = None
    for p in policies:
        if path.startswith(p.prefix):
            if best is None or len(p.prefix) > len(best.prefix):
                best = p
    return best


def _near(val, default):
    return abs(val - default) <= 0.01 * default


def classify_defaults(record, policies=DEFAULT_POLICIES):
    """Tell whether a record uses the default limits of its mount point.

    Returns 'both-default', 'default-space-only', 'default-files-only'
    or 'custom'. Space limits may differ by 1% from the policy due to
    rounding in the quota output, file limits must match exactly.
    """
    policy = match_policy(record.mount_point, policies)
    if policy is None:
        return 'custom'
    space = _near(record.soft_space_limit, policy.soft_space) \
        and _near(record.hard_space_limit, policy.hard_space)
    files = record.soft_file_limit == policy.soft_files \
        and record.hard_file_limit == policy.hard_files
    if space and files:
        return 'both-default'
    elif space:
        return 'default-space-only'
    elif files:
        return 'default-files-only'
    return 'custom'


def grace_state(grace):
    """Classify a grace column: 'absent', 'none', 'expired' or 'running'"""
    if grace is None:
        return 'absent'
    g = grace.strip().lower()
    if g == 'none':
        return 'none'
    if 'expired' in g:
        return 'expired'
    digits = re.findall(r'\d+', g)
    if digits and not any(int(d) for d in digits):
        return 'expired'
    return 'running'


def severity(pct_soft, pct_hard, grace):
    """Over the soft limit without any grace left is as bad as the hard limit."""
    if pct_hard >= 100:
        return 'critical'
    if pct_soft >= 100 and grace_state(grace) != 'running':
        return 'critical'
    if pct_soft >= 75:
        return 'warning'
    return 'normal'


def evaluate(used, soft, hard, grace=None):
    """Compute the usage percentages and severity of one quota."""
    try:
        pct_soft = float(used) / soft * 100
    except ZeroDivisionError:
        pct_soft = float('Inf')
    try:
        pct_hard = float(used) / hard * 100
    except ZeroDivisionError:
        pct_hard = float('Inf')
    return QuotaUsage(used, soft, hard, pct_soft, pct_hard,
                      severity(pct_soft, pct_hard, grace), grace)


_HOURS_MINUTES = re.compile(r'^(\d+):(\d{2})$')
_COMPACT = re.compile(r'^(\d+)\s*(days?|hours?|minutes?|mins?)$', re.IGNORECASE)
_LFS_TIME = re.compile(r'^(?:\d+[wdhms])+$')
_UNITS = {'day': 'day', 'days': 'day', 'hour': 'hour', 'hours': 'hour',
          'min': 'minute', 'mins': 'minute', 'minute': 'minute',
          'minutes': 'minute'}
_LFS_SECONDS = {'w': 7 * 86400, 'd': 86400, 'h': 3600, 'm': 60, 's': 1}


def plural(n, unit):
    if n == 1:
        return '%d %s' % (n, unit)
    return '%d %ss' % (n, unit)


def _breakdown(minutes):
    days, rest = divmod(minutes, 24 * 60)
    hours, mins = divmod(rest, 60)
    parts = [plural(n, unit) for n, unit in
             ((days, 'day'), (hours, 'hour'), (mins, 'minute')) if n]
    return ' '.join(parts) or plural(0, 'minute')


def format_grace(grace):
    """Turn a grace period like '145:30', '6days' or '6d23h59m57s' into words"""
    g = grace.strip()
    m = _HOURS_MINUTES.match(g)
    if m:
        return _breakdown(int(m.group(1)) * 60 + int(m.group(2)))
    m = _COMPACT.match(g)
    if m:
        return plural(int(m.group(1)), _UNITS[m.group(2).lower()])
    if _LFS_TIME.match(g):
        secs = sum(int(n) * _LFS_SECONDS[u]
                   for n, u in re.findall(r'(\d+)([wdhms])', g))
        if secs < 60:
            return plural(secs, 'second')
        return _breakdown(secs // 60)
    return re.sub(r'([0-9])([a-zA-Z])', r'\1 \2', g, count=1)


def colorize(text, color):
    return str(getattr(cf, color)(text))


def format_size(size_mb):
    """Convert a value in megabytes to human readable format"""
    if size_mb < 1024:
        return '%.0fM' % size_mb
    elif size_mb < 1024 ** 2:
        return '%.1fG' % (size_mb / 1024.)
    return '%.1fT' % (size_mb / 1024. ** 2)


def format_number(num):
    """Convert a file count to human readable format"""
    if num < 1000:
        return '%.0f' % num
    elif num < 1000000:
        return '%.1fk' % (num / 1000.)
    return '%.1fM' % (num / 1000000.)


def draw_bar(usage):
    """Draw a usage bar, scaled so that the full width is the hard limit.

    The soft limit is marked with a '|' unless the usage already
    covers it.
    """
    used_chars = min(int(round(float(usage.used) / usage.hard * BAR_WIDTH)),
                     BAR_WIDTH)
    soft_pos = min(int(round(float(usage.soft) / usage.hard * BAR_WIDTH)),
                   BAR_WIDTH)
    fill = SEVERITY_COLORS[usage.severity]
    bar = []
    for ii in range(BAR_WIDTH):
        if ii < used_chars:
            bar.append(colorize('█', fill))
        elif ii == soft_pos:
            bar.append(colorize('|', 'yellow'))
        else:
            bar.append('░')
    bar.append(colorize('|', 'red'))
    return '  %s %.1f%% of soft limit (%.1f%% of hard limit)' \
        % (''.join(bar), usage.pct_soft, usage.pct_hard)


def grace_annotation(usage):
    """Grace period line for a quota, or None if there is nothing to say."""
    state = grace_state(usage.grace)
    if state == 'none':
        return colorize('  ▲ Hard limit reached - no grace period', 'red')
    elif state == 'expired':
        return colorize('  ▲ Grace period expired', 'red')
    elif state == 'running':
        return '%s %s remaining' % (colorize('  ▲ Grace period:', 'yellow'),
                                    format_grace(usage.grace))
    elif usage.pct_soft >= 100:
        # Over the soft limit and no grace reported, lfs does this
        return colorize('  ▲ Grace period expired', 'red')
    return None


def render_section(title, usage, fmt):
    lines = [colorize('  %s:' % title, 'bold'), draw_bar(usage)]
    lines.append('  %s %s  %s %s  %s %s' % (
        colorize('Used:', 'cyan'), fmt(usage.used),
        colorize('Soft:', 'yellow'), fmt(usage.soft),
        colorize('Hard:', 'red'), fmt(usage.hard)))
    note = grace_annotation(usage)
    if note:
        lines.append(note)
    return lines


def render_record(record, policies=DEFAULT_POLICIES):
    """Render one file system as a list of lines.

    The space and files parts are left out when their limits are not
    set.
    """
    lines = ['', colorize('Filesystem: %s' % record.mount_point, 'bold_blue')]
    lines.append('  Quota: %s'
                 % DEFAULT_LABELS[classify_defaults(record, policies)])
    if record.soft_space_limit and record.hard_space_limit:
        usage = evaluate(record.used_space, record.soft_space_limit,
                         record.hard_space_limit, record.space_grace)
        lines += render_section('Space Usage', usage, format_size)
    if record.soft_file_limit and record.hard_file_limit:
        usage = evaluate(record.used_files, record.soft_file_limit,
                         record.hard_file_limit, record.files_grace)
        lines += render_section('Files/Inodes', usage, format_number)
    return lines


def print_header(title):
    """Print a section header"""
    print('')
    print(colorize(RULE, 'bold_cyan'))
    print(colorize('  ' + title, 'bold_cyan'))
    print(colorize(RULE, 'bold_cyan'))


def print_legend():
    print('')
    print('%s %s Used space  %s Soft limit  %s Hard limit  ░ Available' % (
        colorize('Legend:', 'bold'), colorize('█', 'green'),
        colorize('|', 'yellow'), colorize('|', 'red')))
    print('')


def _split_list(val):
    return [d.strip() for d in val.split(',') if d.strip()]


def parse_config(extra=None):
    """Read the config files, returns a Config tuple."""
    import configparser
    home_conf = os.path.expanduser('~/.config/userquota.cfg')
    files = ['/etc/userquota.cfg', home_conf, 'userquota.cfg']
    if extra:
        files.append(extra)
    config = configparser.ConfigParser()
    try:
        found = config.read(files)
        if extra and extra not in found:
            log.warning('Cannot read configuration file %s', extra)
        return _read_config(config)
    except configparser.Error as e:
        log.warning('Ignoring configuration: %s', e)
        return _read_config(configparser.ConfigParser())


def _read_config(config):
    dirs = []
    for e in _split_list(config.get('visit', 'envs', fallback='')):
        d = os.getenv(e)
        if d:
            dirs.append(d)
    dirs += _split_list(config.get('visit', 'dirs', fallback=''))
    policies = dict((p.prefix, p) for p in DEFAULT_POLICIES)
    for section in config.sections():
        if not section.startswith('default:'):
            continue
        prefix = section[len('default:'):].strip()
        policies[prefix] = DefaultPolicy(
            prefix,
            parse_space(config.get(section, 'space_soft', fallback='0')),
            parse_space(config.get(section, 'space_hard', fallback='0')),
            parse_count(config.get(section, 'files_soft', fallback='0')),
            parse_count(config.get(section, 'files_hard', fallback='0')))
    return Config(
        dirs,
        config.get('commands', 'quota', fallback='quota'),
        config.get('commands', 'lfs', fallback='lfs'),
        _split_list(config.get('lustre', 'mounts',
                               fallback='/mnt/scratch, /mnt/fastscratch')),
        _split_list(config.get('lustre', 'conditional_mounts',
                               fallback='/mnt/fastscratch2')),
        config.get('lustre', 'user_dir', fallback='users/{user}'),
        tuple(policies.values()))


def visit_fs(dirs):
    """Visit file systems to ensure they are mounted."""
    for dir in dirs:
        try:
            os.stat(dir)
        except OSError as e:
            log.debug('Cannot visit %s: %s', dir, e)


def run_command(cmd):
    """Run a quota command and return its output.

    Returns an empty string if the command cannot be run. quota exits
    with a non-zero status when the user is over quota, so the output
    is used regardless of the exit status.
    """
    log.debug('Running %s', ' '.join(cmd))
    try:
        p = subprocess.run(cmd, stdout=subprocess.PIPE,
                           stderr=subprocess.DEVNULL,
                           universal_newlines=True)
    except OSError as e:
        log.debug('Cannot run %s: %s', cmd[0], e)
        return ''
    if p.returncode != 0:
        log.debug('%s exited with status %d', cmd[0], p.returncode)
    return p.stdout


def nfs_quota_output(user, quota_bin='quota'):
    return run_command([quota_bin, '-s', '-u', user])


def lustre_quota_output(user, mount, lfs_bin='lfs'):
    return run_command([lfs_bin, 'quota', '-h', '-u', user, mount])


def lustre_mounts(user, config):
    """Lustre mount points to query for user.

    The conditional mounts are only included if the user has a
    directory there.
    """
    mounts = list(config.lustre_mounts)
    for mp in config.conditional_mounts:
        udir = os.path.join(mp, config.user_dir.format(user=user))
        if os.path.isdir(udir):
            mounts.append(mp)
        else:
            log.debug('Skipping %s, %s does not exist', mp, udir)
    return mounts


def check_user(user):
    import pwd
    try:
        pwd.getpwnam(user)
    except KeyError:
        return False
    return True


class QuotaOptionParser(OptionParser):
    """OptionParser that exits with status 1 on bad arguments"""

    def error(self, msg):
        self.print_usage(sys.stderr)
        self.exit(1, '%s: error: %s\n' % (self.get_prog_name(), msg))


def print_lines(lines):
    for line in lines:
        print(line)


def quota_main(argv=None):
    """Main interface of the quota program, returns the exit status."""
    import getpass
    usage = """%prog [options] [user]

Display the disk usage quotas on NFS and Lustre file systems for the
specified user, or for the current user if no user is given.
"""
    parser = QuotaOptionParser(usage, version='%prog ' + __version__)
    parser.add_option('-c', '--config', dest='config', metavar='FILE',
                      help='Read FILE after the default config files')
    parser.add_option('--no-color', dest='color', action='store_false',
                      default=True, help='Disable colors')
    parser.add_option('-v', '--verbose', dest='verbose', action='store_true',
                      default=False, help='Print debug messages')
    options, args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if options.verbose else logging.WARNING,
        format='%(levelname)s: %(message)s')

    if len(args) > 1:
        print('Error: Illegal number of arguments', file=sys.stderr)
        parser.print_help(sys.stderr)
        return 1
    if args:
        user = args[0]
    else:
        user = getpass.getuser()
    if not check_user(user):
        print("Error: User '%s' does not exist" % user, file=sys.stderr)
        parser.print_help(sys.stderr)
        return 1

    if not options.color:
        cf.disable()
    config = parse_config(options.config)
    visit_fs(config.visit_dirs)

    print(colorize('Display the disk usage quotas on NFS and Lustre file '
                   'systems for user %s.' % user, 'bold'))

    print_header('NFS File Systems')
    output = nfs_quota_output(user, config.quota_bin)
    for record in parse_nfs_quota(output):
        print_lines(render_record(record, config.policies))

    print_header('Lustre File Systems')
    for mp in lustre_mounts(user, config):
        output = lustre_quota_output(user, mp, config.lfs_bin)
        if not output.strip():
            log.debug('No quota output for %s', mp)
            continue
        record = parse_lustre_quota(output, mp)
        if record is not None:
            print_lines(render_record(record, config.policies))

    print_legend()
    return 0


def main():
    sys.exit(quota_main())


if __name__ == "__main__":
    main()
