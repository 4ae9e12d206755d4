"""Tests for graph assembly."""

import asyncio
from pathlib import Path

from docgraph.assembler import GraphAssembler, build_graph, document_id, external_id
from docgraph.models import BuildOptions, DocumentNode, ExternalNode, edge_endpoints_present
from docgraph.parser import ParsedDocument
from docgraph.scanner import ScannedDocument

from conftest import write_docs


def _doc(path: str, targets=(), external=(), broken=()) -> ScannedDocument:
    parsed = ParsedDocument(
        title=path, description="", line_count=1, word_count=1, external_links=list(external)
    )
    return ScannedDocument(
        file_path=path,
        parsed=parsed,
        size=10,
        internal_targets=list(targets),
        broken_links=list(broken),
    )


class TestBuildGraph:
    """End-to-end scan + assembly."""

    def test_sample_graph(self, sample_docs: Path):
        result = asyncio.run(build_graph(sample_docs, BuildOptions(include_external_links=True)))
        graph = result.graph
        nodes = graph.node_map()

        assert graph.document_count == 3
        assert graph.external_count == 1
        assert len(graph.edges) == 3
        assert result.total_documents == 3
        assert result.loaded_documents == 3
        assert not result.has_more

        assert nodes["doc-A.md"].connection_count == 2
        assert nodes["doc-B.md"].connection_count == 1
        assert nodes["doc-C.md"].connection_count == 0
        assert nodes["ext-example.com"].connection_count == 1
        assert nodes["doc-A.md"].neighbors == frozenset({"doc-B.md", "ext-example.com"})
        assert nodes["doc-A.md"].title == "Alpha"
        assert edge_endpoints_present(graph.nodes, graph.edges)

    def test_without_external_links(self, sample_docs: Path):
        result = asyncio.run(build_graph(sample_docs, BuildOptions(include_external_links=False)))
        graph = result.graph
        assert graph.external_count == 0
        assert all(edge.type == "internal" for edge in graph.edges)
        assert graph.node_map()["doc-A.md"].connection_count == 1

    def test_cap_keeps_edges_closed(self, temp_dir: Path):
        write_docs(temp_dir, {"a.md": "[b](b.md) [c](c.md)", "b.md": "[c](c.md)", "c.md": "# c"})
        result = asyncio.run(build_graph(temp_dir, BuildOptions(max_nodes=2)))
        graph = result.graph
        assert [node.id for node in graph.nodes] == ["doc-a.md", "doc-b.md"]
        assert [(edge.source, edge.target) for edge in graph.edges] == [("doc-a.md", "doc-b.md")]
        assert edge_endpoints_present(graph.nodes, graph.edges)
        assert result.has_more

    def test_footnotes_and_malformed_urls_do_not_break_the_build(self, temp_dir: Path):
        write_docs(
            temp_dir,
            {
                "A.md": "Claim.[^1] [bad](http://[oops/x) [b](B.md) [c](<my doc.md>)\n\n[^1]: See the appendix.\n",
                "B.md": "# B\n",
                "my doc.md": "# Spaced\n",
            },
        )
        result = asyncio.run(build_graph(temp_dir, BuildOptions(include_external_links=True)))
        graph = result.graph
        node = graph.node_map()["doc-A.md"]
        assert node.broken_links == ()
        assert graph.external_count == 0
        assert [(edge.source, edge.target) for edge in graph.edges] == [
            ("doc-A.md", "doc-B.md"),
            ("doc-A.md", "doc-my doc.md"),
        ]


class TestGraphAssembler:
    """Assembly from scanned records."""

    def test_external_links_collapse_by_domain(self):
        docs = [
            _doc("a.md", external=["https://example.com/x", "https://www.example.com/y", "https://example.com/x"]),
            _doc("b.md", external=["https://example.com/z", "https://other.org"]),
        ]
        graph = GraphAssembler().assemble(docs)
        nodes = graph.node_map()

        example = nodes[external_id("example.com")]
        assert isinstance(example, ExternalNode)
        assert example.link_count == 4
        assert example.urls == ("https://example.com/x", "https://www.example.com/y", "https://example.com/z")
        assert example.connection_count == 2
        assert [edge.type for edge in graph.edges].count("external") == 3

    def test_node_order(self):
        docs = [_doc("b.md", external=["https://zeta.io"]), _doc("a.md", external=["https://alpha.io"])]
        graph = GraphAssembler().assemble(docs)
        assert [node.id for node in graph.nodes] == ["doc-b.md", "doc-a.md", "ext-alpha.io", "ext-zeta.io"]

    def test_edges_are_deduplicated(self):
        docs = [_doc("a.md", targets=["b.md", "b.md"]), _doc("b.md", targets=["a.md"])]
        graph = GraphAssembler().assemble(docs)
        assert [(edge.source, edge.target) for edge in graph.edges] == [
            ("doc-a.md", "doc-b.md"),
            ("doc-b.md", "doc-a.md"),
        ]
        # degree counts distinct neighbors, not edges
        assert graph.node_map()["doc-a.md"].connection_count == 1

    def test_targets_outside_document_set_are_ignored(self):
        graph = GraphAssembler().assemble([_doc("a.md", targets=["ghost.md"])])
        assert graph.edges == ()
        assert edge_endpoints_present(graph.nodes, graph.edges)

    def test_broken_links_and_positions_attach(self):
        docs = [_doc("a.md", broken=["missing.md"]), _doc("b.md")]
        graph = GraphAssembler().assemble(docs, positions={"doc-a.md": (1.5, -2.0)})
        nodes = graph.node_map()
        node = nodes["doc-a.md"]
        assert isinstance(node, DocumentNode)
        assert node.broken_links == ("missing.md",)
        assert node.position == (1.5, -2.0)
        assert nodes["doc-b.md"].position is None

    def test_ids(self):
        assert document_id("guide/intro.md") == "doc-guide/intro.md"
        assert external_id("example.com") == "ext-example.com"

    def test_to_dict_payload(self):
        graph = GraphAssembler().assemble([_doc("a.md", external=["https://example.com"])])
        payload = graph.to_dict()
        doc = payload["nodes"][0]
        assert doc["type"] == "document"
        assert doc["filePath"] == "a.md"
        assert doc["connectionCount"] == 1
        assert "depth" not in doc
        assert payload["edges"] == [{"source": "doc-a.md", "target": "ext-example.com", "type": "external"}]
