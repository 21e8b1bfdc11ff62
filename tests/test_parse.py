import pytest

from userquota import (QuotaFields, parse_count, parse_lustre_quota,
                       parse_nfs_quota, parse_space, split_nfs_fields)


@pytest.mark.parametrize('val, mb', [
    ('512M', 512.),
    ('2.5G', 2560.),
    ('1T', 1024. ** 2),
    ('2048K', 2.),
    ('1024', 1.),
    ('2600G*', 2600. * 1024),
    ('0k', 0.),
    ('', 0.),
    (None, 0.),
    ('lots', 0.),
])
def test_parse_space(val, mb):
    assert parse_space(val) == pytest.approx(mb)


@pytest.mark.parametrize('val, count', [
    ('300k', 300000),
    ('500K', 500000),
    ('1.2M', 1200000),
    ('4000', 4000),
    ('12*', 12),
    ('[7]', 7),
    ('', 0),
    ('-', 0),
])
def test_parse_count(val, count):
    assert parse_count(val) == count


def test_split_nfs_fields_same_without_grace_column():
    with_grace = split_nfs_fields(
        '9216M* 8192M 10240M 6days 4000 5000 6000 3days'.split())
    without = split_nfs_fields('9216M* 8192M 10240M 4000 5000 6000 3days'.split())
    assert with_grace == QuotaFields('9216M*', '8192M', '10240M', '6days',
                                     '4000', '5000', '6000', '3days')
    assert without == with_grace._replace(grace=None)


def test_split_nfs_fields_over_files_quota_without_grace():
    fields = split_nfs_fields('1200G 2500G 3000G 320k* 300k 500k'.split())
    assert fields.grace is None
    assert fields.files == '320k*'
    assert fields.files_hard == '500k'
    assert fields.files_grace is None


def test_parse_nfs_quota_split_lines(nfs_output):
    records = parse_nfs_quota(nfs_output)
    assert [r.mount_point for r in records] == [
        '192.168.10.5:/export/data/alice', '192.168.10.5:/export/home/alice']

    data = records[0]
    assert data.used_space == 1200 * 1024
    assert data.soft_space_limit == 2500 * 1024
    assert data.hard_space_limit == 3000 * 1024
    assert data.space_grace is None
    assert (data.used_files, data.soft_file_limit, data.hard_file_limit) \
        == (120000, 300000, 500000)
    assert data.files_grace is None

    home = records[1]
    assert home.used_space == 9216
    assert home.space_grace == '6days'
    assert home.used_files == 4000
    assert home.hard_file_limit == 6000


def test_parse_nfs_quota_inline_line():
    output = ("Disk quotas for user bob (uid 1002): \n"
              "     Filesystem   space   quota   limit   grace   files   quota   limit   grace\n"
              "      /dev/sda1     20M    100M    120M              30     100     200\n"
              "/dev/sdb1          20M    100M    120M              30     100     200\n")
    records = parse_nfs_quota(output)
    assert len(records) == 1
    assert records[0].mount_point == '/dev/sdb1'
    assert records[0].used_space == 20
    assert records[0].hard_file_limit == 200


def test_parse_nfs_quota_nothing():
    assert parse_nfs_quota('') == []
    assert parse_nfs_quota('Disk quotas for user bob (uid 1002): none\n') == []


def test_parse_nfs_quota_fs_without_data():
    output = "nfs01:/export/data\nnfs02:/export/home\n     1M  2M  3M  1  2  3\n"
    records = parse_nfs_quota(output)
    assert [r.mount_point for r in records] == ['nfs02:/export/home']


def test_parse_lustre_inline(lustre_inline):
    record = parse_lustre_quota(lustre_inline, '/mnt/scratch')
    assert record.mount_point == '/mnt/scratch'
    assert record.used_space == pytest.approx(1.2 * 1024 ** 2)
    assert record.soft_space_limit == 1024 ** 2
    assert record.space_grace == '6d23h59m57s'
    assert record.used_files == 50000
    assert record.soft_file_limit == 1000000
    assert record.files_grace is None


def test_parse_lustre_two_line(lustre_two_line):
    record = parse_lustre_quota(lustre_two_line, '/mnt/fastscratch')
    assert record.used_space == 512 * 1024
    assert record.hard_space_limit == 2 * 1024 ** 2
    assert record.space_grace is None
    assert record.used_files == 12345
    assert record.soft_file_limit == 0


def test_parse_lustre_other_mount_is_ignored(lustre_inline):
    assert parse_lustre_quota(lustre_inline, '/mnt/fastscratch') is None
    assert parse_lustre_quota('', '/mnt/scratch') is None
    assert parse_lustre_quota('/mnt/scratch\n', '/mnt/scratch') is None


def test_parse_nfs_quota_path_with_filesystem_in_name():
    output = ("     Filesystem   space   quota   limit   grace   files   quota   limit   grace\n"
              "nas:/export/Filesystems/alice\n"
              "                    20M    100M    120M              30     100     200\n")
    records = parse_nfs_quota(output)
    assert [r.mount_point for r in records] == ['nas:/export/Filesystems/alice']
    assert records[0].soft_space_limit == 100
