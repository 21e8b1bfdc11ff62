import re

import pytest

import userquota

ANSI_RE = re.compile(r'\x1b\[[0-9;]*m')

_NFS_OUTPUT = """\
Disk quotas for user alice (uid 1001): 
     Filesystem   space   quota   limit   grace   files   quota   limit   grace
192.168.10.5:/export/data/alice
                  1200G   2500G   3000G            120k    300k    500k        
192.168.10.5:/export/home/alice
                  9216M*  8192M  10240M   6days    4000   5000    6000        
"""

_LUSTRE_INLINE = """\
Disk quotas for usr alice (uid 1001):
     Filesystem    used   quota   limit   grace   files   quota   limit   grace
   /mnt/scratch   1.2T*     1T    1.5T  6d23h59m57s  50000  1000000  1200000       -
"""

_LUSTRE_TWO_LINE = """\
Disk quotas for usr alice (uid 1001):
     Filesystem    used   quota   limit   grace   files   quota   limit   grace
/mnt/fastscratch
                   512G      1T      2T       -   12345      0k      0k       -
"""


@pytest.fixture
def plain():
    """Strip the color codes from rendered text."""
    return lambda text: ANSI_RE.sub('', text)


@pytest.fixture
def config():
    return userquota.Config([], 'quota', 'lfs',
                            ['/mnt/scratch', '/mnt/fastscratch'], [],
                            'users/{user}', userquota.DEFAULT_POLICIES)


@pytest.fixture
def nfs_output():
    return _NFS_OUTPUT


@pytest.fixture
def lustre_inline():
    return _LUSTRE_INLINE


@pytest.fixture
def lustre_two_line():
    return _LUSTRE_TWO_LINE


@pytest.fixture
def true_colors():
    """Render with 24 bit colors, whatever the terminal or --no-color said."""
    colormode = userquota.cf.colormode
    userquota.cf.use_true_colors()
    yield
    userquota.cf.colormode = colormode
