#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Unit tests for the john output parser
"""
import sys
import unittest
from pathlib import Path

# Import from johnunlock module
sys.path.insert(0, str(Path(__file__).parent))
from johnunlock import (
    FileFormat, HashEntry, HashFileIndex, JohnOutputParser, ParserState, UnmatchedLabel,
    UnrecognizedFileFormat, encode_path_label, parse_john_output, strip_ansi,
)

PDF_HASH_A = "$pdf$4*4*128*-1060*1*16*aaaa*32*bbbb*32*cccc"
PDF_HASH_B = "$pdf$4*4*128*-1060*1*16*dddd*32*eeee*32*ffff"
ZIP_HASH = "$pkzip$1*2*2*0*1c*10*eda9bd7b*0*42*0*1c*eda9*a6d8*7e8b*$/pkzip$"

DOC_A = "/tmp/reports/doc a.pdf"
DOC_B = "/tmp/reports/doc_b.pdf"
ZIP_PATH = "/tmp/secret.zip"
LABEL_A = encode_path_label(DOC_A)
LABEL_B = encode_path_label(DOC_B)
ZIP_LABEL = "secret.zip/secret.txt"


def build_index() -> HashFileIndex:
    index = HashFileIndex()
    index.add(HashEntry(LABEL_A, PDF_HASH_A, FileFormat.PDF, DOC_A))
    index.add(HashEntry(LABEL_B, PDF_HASH_B, FileFormat.PDF, DOC_B))
    index.add(HashEntry(ZIP_LABEL, ZIP_HASH, FileFormat.PKZIP, ZIP_PATH))
    return index


class TestStripAnsi(unittest.TestCase):
    def test_removes_colour_codes(self):
        self.assertEqual(strip_ansi("\x1b[1;32msecret\x1b[0m (label)"), "secret (label)")


class TestGroupHeaders(unittest.TestCase):
    """Test 'Loaded N password hashes' header parsing"""

    def test_header_with_salts(self):
        output = (
            "Using default input encoding: UTF-8\n"
            "Loaded 3 password hashes with 2 different salts (PDF [MD5 SHA2 RC4/AES 32/64])\n"
            f"first  ({LABEL_A})\n"
            f"second ({LABEL_B})\n"
        )
        groups = parse_john_output(output, build_index())
        self.assertEqual(len(groups), 1)
        group = groups[0]
        self.assertIs(group.format, FileFormat.PDF)
        self.assertEqual(group.hash_count, 3)
        self.assertEqual(group.salt_count, 2)
        self.assertEqual(group.encryption_algorithms, "MD5 SHA2 RC4/AES 32/64")
        self.assertEqual(len(group.cracked_by_path), 2)
        self.assertEqual(set(group.cracked_by_path), {DOC_A.lower(), DOC_B.lower()})
        self.assertEqual({r.original_path: r.password for r in group.records},
                         {DOC_A: "first", DOC_B: "second"})

    def test_salt_count_defaults_to_one(self):
        groups = parse_john_output("Loaded 1 password hash (PKZIP [32/64])", build_index())
        self.assertEqual(groups[0].hash_count, 1)
        self.assertEqual(groups[0].salt_count, 1)
        self.assertIs(groups[0].format, FileFormat.PKZIP)

    def test_groups_keep_header_order(self):
        output = (
            "Loaded 1 password hash (PKZIP [32/64])\n"
            f"zippass (secret.zip/secret.txt)\n"
            "Loaded 2 password hashes (pdf [MD5 SHA2 RC4/AES 32/64])\n"
            f"pdfpass ({LABEL_B})\n"
        )
        groups = parse_john_output(output, build_index())
        self.assertEqual([g.format for g in groups], [FileFormat.PKZIP, FileFormat.PDF])
        self.assertEqual(groups[0].records[0].original_path, ZIP_PATH)
        self.assertEqual(groups[1].records[0].password, "pdfpass")

    def test_unknown_format_token_is_fatal(self):
        output = "Loaded 1 password hash (ZIP, WinZip [PBKDF2-SHA1 256/256 AVX2 8x])"
        with self.assertRaises(UnrecognizedFileFormat):
            parse_john_output(output, build_index())

    def test_empty_group_is_valid(self):
        output = (
            "Loaded 2 password hashes (PDF [MD5 SHA2 RC4/AES 32/64])\n"
            "0g 0:00:00:01 DONE (2024-05-01 10:00) 0g/s 3400p/s 3400c/s 3400C/s\n"
            "Session completed.\n"
        )
        groups = parse_john_output(output, build_index())
        self.assertEqual(len(groups), 1)
        self.assertEqual(groups[0].records, [])


class TestCrackedLines(unittest.TestCase):
    """Test 'password (label)' lines"""

    def test_lines_before_first_header_are_ignored(self):
        output = (
            f"stray ({LABEL_A})\n"
            f"also (not-a-known-label)\n"
            "Loaded 1 password hash (PDF [AES])\n"
        )
        groups = parse_john_output(output, build_index())
        self.assertEqual(groups[0].records, [])

    def test_password_may_contain_spaces_and_parentheses(self):
        output = f"Loaded 1 password hash (PDF [AES])\nmy (odd) pass word   ({LABEL_A})\n"
        group = parse_john_output(output, build_index())[0]
        self.assertEqual(group.records[0].password, "my (odd) pass word")

    def test_ansi_and_crlf_are_tolerated(self):
        output = (
            "\x1b[0mLoaded 1 password hash (PDF [AES])\r\n"
            f"\x1b[1;33mcolour\x1b[0m  ({LABEL_A})\r"
            "Session completed.\r\n"
        )
        group = parse_john_output(output, build_index())[0]
        self.assertEqual(group.records[0].password, "colour")

    def test_label_lookup_is_case_insensitive(self):
        output = "Loaded 1 password hash (PKZIP [32/64])\nzippass (SECRET.ZIP/Secret.txt)\n"
        group = parse_john_output(output, build_index())[0]
        self.assertEqual(group.records[0].original_path, ZIP_PATH)

    def test_unmatched_label_halts_parsing(self):
        parser = JohnOutputParser(build_index())
        output = (
            "Loaded 2 password hashes (PDF [AES])\n"
            "lost (bm90LWluLWhhc2gtZmlsZQ==)\n"
            f"found ({LABEL_A})\n"
        )
        with self.assertRaises(UnmatchedLabel) as ctx:
            parser.parse(output)
        self.assertIn("bm90LWluLWhhc2gtZmlsZQ==", str(ctx.exception))
        # the line after the failure was never recorded
        self.assertEqual(parser.groups[0].records, [])

    def test_later_line_overwrites_same_path(self):
        output = (
            "Loaded 1 password hash (PDF [AES])\n"
            f"first ({LABEL_A})\n"
            f"second ({LABEL_A})\n"
        )
        group = parse_john_output(output, build_index())[0]
        self.assertEqual(len(group.records), 1)
        self.assertEqual(group.records[0].password, "second")

    def test_empty_password(self):
        """john prints an empty password as whitespace before the label"""
        output = f"Loaded 1 password hash (PDF [AES])\n      ({LABEL_A})\n"
        group = parse_john_output(output, build_index())[0]
        self.assertEqual(len(group.records), 1)
        self.assertEqual(group.records[0].original_path, DOC_A)
        self.assertEqual(group.records[0].password, "")

    def test_target_path_uses_output_dir(self):
        output = f"Loaded 1 password hash (PDF [AES])\nx ({LABEL_B})\n"
        record = parse_john_output(output, build_index(), output_dir="/out")[0].records[0]
        self.assertEqual(record.target_path, str(Path("/out") / "doc_b_unlocked.pdf"))


class TestPotFallback(unittest.TestCase):
    """Test recovery from the pot file when john has nothing left to crack"""

    def test_recovers_from_pot(self):
        pot = {PDF_HASH_B.lower(): "from-pot"}
        output = (
            "Loaded 2 password hashes (PDF [MD5 SHA2 RC4/AES 32/64])\n"
            "No password hashes left to crack (see FAQ)\n"
        )
        group = parse_john_output(output, build_index(), pot)[0]
        self.assertEqual(len(group.records), 1)
        record = group.records[0]
        self.assertEqual(record.original_path, DOC_B)
        self.assertEqual(record.password, "from-pot")
        self.assertIs(record.format, FileFormat.PDF)

    def test_pot_entry_overwrites_earlier_live_line(self):
        """Test the pot password replaces a live crack of the same file in the same group"""
        pot = {PDF_HASH_B.lower(): "pot"}
        output = (
            "Loaded 2 password hashes (PDF [MD5 SHA2 RC4/AES 32/64])\n"
            f"live ({LABEL_B})\n"
            "No password hashes left to crack (see FAQ)\n"
        )
        group = parse_john_output(output, build_index(), pot)[0]
        self.assertEqual(len(group.records), 1)
        self.assertEqual(group.records[0].original_path, DOC_B)
        self.assertEqual(group.records[0].password, "pot")

    def test_only_active_format_is_recovered(self):
        pot = {PDF_HASH_A.lower(): "pdf-pot", ZIP_HASH.lower(): "zip-pot"}
        output = "Loaded 1 password hash (PKZIP [32/64])\nNo password hashes left to crack (see FAQ)\n"
        group = parse_john_output(output, build_index(), pot)[0]
        self.assertEqual([(r.original_path, r.password) for r in group.records], [(ZIP_PATH, "zip-pot")])

    def test_format_without_entries_is_skipped(self):
        index = HashFileIndex()
        index.add(HashEntry(LABEL_A, PDF_HASH_A, FileFormat.PDF, DOC_A))
        output = "Loaded 1 password hash (PKZIP [32/64])\nNo password hashes left to crack (see FAQ)\n"
        groups = parse_john_output(output, index, {ZIP_HASH.lower(): "zip-pot"})
        self.assertEqual(groups[0].records, [])

    def test_sentinel_without_group_is_ignored(self):
        parser = JohnOutputParser(build_index(), {PDF_HASH_A.lower(): "x"})
        self.assertEqual(parser.parse("No password hashes left to crack (see FAQ)\n"), [])
        self.assertIs(parser.state, ParserState.NO_ACTIVE_GROUP)


class TestEndToEndScenario(unittest.TestCase):
    def test_single_pdf(self):
        label = encode_path_label("/tmp/doc.pdf")
        index = HashFileIndex()
        index.add(HashEntry(label, PDF_HASH_A, FileFormat.PDF, "/tmp/doc.pdf"))
        output = f"Loaded 1 password hash (PDF [AES-128]) \n secret123 ({label})"
        groups = parse_john_output(output, index)
        records = [r for g in groups for r in g.records]
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].original_path, "/tmp/doc.pdf")
        self.assertEqual(records[0].password, "secret123")
        self.assertEqual(records[0].target_path, "/tmp/doc_unlocked.pdf")


def run_tests():
    """Run all tests"""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    suite.addTests(loader.loadTestsFromTestCase(TestStripAnsi))
    suite.addTests(loader.loadTestsFromTestCase(TestGroupHeaders))
    suite.addTests(loader.loadTestsFromTestCase(TestCrackedLines))
    suite.addTests(loader.loadTestsFromTestCase(TestPotFallback))
    suite.addTests(loader.loadTestsFromTestCase(TestEndToEndScenario))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)

    return result.wasSuccessful()


if __name__ == "__main__":
    success = run_tests()
    sys.exit(0 if success else 1)
