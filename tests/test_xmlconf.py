from collections import OrderedDict
import os
import os.path
import tempfile
import unittest
from unittest.mock import patch

from winpkg.plumbing.common import NotFound, State
from winpkg.plumbing import xmlconf


SITE = """<?xml version="1.0"?>
<?xml-stylesheet type="text/xsl" href="configuration.xsl"?>
<!-- Local overrides. -->
<configuration>
  <!-- Storage -->
  <property>
    <name>a</name>
    <value>1</value>
    <description>First.</description>
  </property>
  <property>
    <name>b</name>
    <value>2</value>
  </property>
</configuration>
"""


class TestDocument(unittest.TestCase):

    def test_items(self):
        doc = xmlconf.parse(SITE)
        self.assertEqual(doc.items(), [("a", "1"), ("b", "2")])

    def test_get_missing(self):
        doc = xmlconf.parse(SITE)
        with self.assertRaises(KeyError):
            doc.get("c")

    def test_name_whitespace(self):
        doc = xmlconf.parse("<configuration><property><name> a\n</name><value>1</value>"
                            "</property></configuration>")
        self.assertEqual(doc.get("a"), "1")

    def test_name_case_sensitive(self):
        doc = xmlconf.parse(SITE)
        self.assertIsNone(doc.find("A"))

    def test_nested_ignored(self):
        doc = xmlconf.parse("<configuration><extra><property><name>a</name><value>1</value>"
                            "</property></extra></configuration>")
        self.assertEqual(doc.names(), [])

    def test_bad_root(self):
        with self.assertRaises(ValueError):
            xmlconf.parse("<properties/>")

    def test_prolog(self):
        doc = xmlconf.parse(SITE)
        self.assertTrue(doc.prolog.startswith('<?xml version="1.0"?>'))
        self.assertIn("<!-- Local overrides. -->", doc.prolog)


class TestUpsert(unittest.TestCase):

    def test_update_and_append(self):
        doc = xmlconf.parse(SITE)
        result = xmlconf.upsert(doc, OrderedDict([("b", "3"), ("c", "4")]))
        self.assertEqual(result.state, State.success)
        self.assertEqual(doc.items(), [("a", "1"), ("b", "3"), ("c", "4")])

    def test_unchanged(self):
        doc = xmlconf.parse(SITE)
        result = xmlconf.upsert(doc, {"a": "1", "b": "2"})
        self.assertEqual(result.state, State.unchanged)

    def test_idempotent(self):
        doc = xmlconf.parse(SITE)
        xmlconf.upsert(doc, {"b": "3", "c": "4"})
        once = doc.serialize()
        result = xmlconf.upsert(doc, {"b": "3", "c": "4"})
        self.assertEqual(result.state, State.unchanged)
        self.assertEqual(doc.serialize(), once)

    def test_empty_mapping(self):
        doc = xmlconf.parse(SITE)
        result = xmlconf.upsert(doc, {})
        self.assertFalse(result)
        self.assertEqual(doc.items(), [("a", "1"), ("b", "2")])

    def test_empty_value(self):
        doc = xmlconf.parse(SITE)
        xmlconf.upsert(doc, {"a": ""})
        self.assertEqual(doc.get("a"), "")
        self.assertEqual(doc.names(), ["a", "b"])

    def test_duplicates(self):
        doc = xmlconf.parse("<configuration>"
                            "<property><name>a</name><value>1</value></property>"
                            "<property><name>a</name><value>2</value></property>"
                            "</configuration>")
        xmlconf.upsert(doc, {"a": "3"})
        self.assertEqual(doc.items(), [("a", "3"), ("a", "2")])

    def test_missing_value(self):
        doc = xmlconf.parse("<configuration><property><name>a</name></property></configuration>")
        xmlconf.upsert(doc, {"a": "1"})
        self.assertEqual(doc.get("a"), "1")

    def test_other_content_kept(self):
        doc = xmlconf.parse(SITE)
        xmlconf.upsert(doc, {"a": "5", "c": "4"})
        text = doc.serialize()
        self.assertIn("<!-- Storage -->", text)
        self.assertIn("<description>First.</description>", text)
        self.assertTrue(text.startswith('<?xml version="1.0"?>\n'
                                        '<?xml-stylesheet type="text/xsl"'))

    def test_empty_document(self):
        doc = xmlconf.parse("<configuration/>")
        xmlconf.upsert(doc, {"a": "1"})
        self.assertEqual(xmlconf.parse(doc.serialize()).items(), [("a", "1")])

    def test_value_escaped(self):
        doc = xmlconf.parse("<configuration/>")
        xmlconf.upsert(doc, {"a": "<x> & y"})
        self.assertIn("&lt;x&gt; &amp; y", doc.serialize())
        self.assertEqual(xmlconf.parse(doc.serialize()).get("a"), "<x> & y")


class TestFiles(unittest.TestCase):

    def setUp(self):
        self.tempdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tempdir.name, "hbase-site.xml")
        with open(self.path, "w", encoding="utf-8") as f:
            f.write(SITE)

    def tearDown(self):
        self.tempdir.cleanup()

    def read(self):
        with open(self.path, encoding="utf-8") as f:
            return f.read()

    def test_load_missing(self):
        with self.assertRaises(NotFound):
            xmlconf.load(os.path.join(self.tempdir.name, "missing.xml"))

    def test_load(self):
        doc = xmlconf.load(self.path)
        self.assertEqual(doc.path, self.path)
        self.assertEqual(doc.names(), ["a", "b"])

    def test_save_round_trip(self):
        xmlconf.save(xmlconf.load(self.path))
        self.assertEqual(xmlconf.load(self.path).items(), [("a", "1"), ("b", "2")])
        self.assertIn("<!-- Local overrides. -->", self.read())

    def test_save_no_temp_left(self):
        xmlconf.save(xmlconf.load(self.path))
        self.assertEqual(os.listdir(self.tempdir.name), ["hbase-site.xml"])

    def test_save_failure_keeps_original(self):
        doc = xmlconf.load(self.path)
        xmlconf.upsert(doc, {"a": "changed"})
        with patch("os.replace", side_effect=OSError("disk full")):
            with self.assertRaises(OSError):
                xmlconf.save(doc)
        self.assertEqual(self.read(), SITE)
        self.assertEqual(os.listdir(self.tempdir.name), ["hbase-site.xml"])

    def test_reconcile(self):
        result = xmlconf.reconcile(self.path, {"b": "3", "c": "4"})
        self.assertEqual(result.state, State.success)
        self.assertEqual(result.value.items(), [("a", "1"), ("b", "3"), ("c", "4")])
        self.assertEqual(xmlconf.load(self.path).items(), [("a", "1"), ("b", "3"), ("c", "4")])

    def test_reconcile_unchanged(self):
        with patch.object(xmlconf, "save") as save:
            result = xmlconf.reconcile(self.path, {"a": "1"})
        self.assertEqual(result.state, State.unchanged)
        save.assert_not_called()
        self.assertEqual(self.read(), SITE)

    def test_reconcile_missing(self):
        with self.assertRaises(NotFound):
            xmlconf.reconcile(os.path.join(self.tempdir.name, "missing.xml"), {"a": "1"})


if __name__ == "__main__":
    unittest.main()
