import networkx as nx
import pandas as pd
import pytest

from otu_network.analysis import HubAnalyzer
from otu_network.config import make_config
from otu_network.exporters import NetworkExporter


@pytest.fixture
def tom():
    taxa = ['A', 'B', 'C', 'D', 'E']
    values = [
        [1.0, 0.8, 0.6, 0.2, 0.1],
        [0.8, 1.0, 0.4, 0.7, 0.1],
        [0.6, 0.4, 1.0, 0.5, 0.1],
        [0.2, 0.7, 0.5, 1.0, 0.1],
        [0.1, 0.1, 0.1, 0.1, 1.0],
    ]
    return pd.DataFrame(values, index=taxa, columns=taxa)


@pytest.fixture
def config():
    return make_config(OVERLAP_THRESHOLD=0.5, EXPORT_THRESHOLD=0.5, HIVE_TOP_N=2)


class TestNodeCentrality:
    def test_counts_strictly_above_threshold(self, logger, config, tom):
        centrality = HubAnalyzer(logger, config).node_centrality(tom, ['A', 'B', 'C', 'D'])

        assert centrality.to_dict() == {'A': 2, 'B': 2, 'C': 1, 'D': 1}
        assert centrality.index.name == 'OTU'

    def test_self_overlap_not_counted(self, logger, config, tom):
        centrality = HubAnalyzer(logger, config).node_centrality(tom, ['E'], threshold=0.0)
        assert centrality['E'] == 0

    def test_module_centrality_and_top_hubs(self, logger, config, tom):
        analyzer = HubAnalyzer(logger, config)
        modules = pd.Series(['blue', 'blue', 'turquoise', 'turquoise', 'grey'], index=tom.index)

        centrality = analyzer.module_centrality(tom, modules)

        assert set(centrality['OTU']) == {'A', 'B', 'C', 'D'}
        blue = centrality[centrality['module'] == 'blue'].set_index('OTU')['connectivity']
        assert blue.to_dict() == {'A': 1, 'B': 1}
        turquoise = centrality[centrality['module'] == 'turquoise'].set_index('OTU')['connectivity']
        assert turquoise.to_dict() == {'C': 0, 'D': 0}

        top = analyzer.get_top_hubs_per_module(centrality, top_n=1)
        assert len(top) == 2


def test_hive_table(logger, config):
    members = ['A', 'B', 'C']
    vip = pd.DataFrame({'VIP': [1.6, 0.9, 0.3], 'rank': [1, 2, 3]},
                       index=pd.Index(members, name='OTU'))
    significance = {
        'cor': pd.DataFrame({'Nox': [0.8, 0.4, 0.9]}, index=members),
        'pvalue': pd.DataFrame({'Nox': [0.001, 0.08, 0.0001]}, index=members),
    }
    membership = {'cor': pd.DataFrame({'blue': [0.95, 0.7, 0.6]}, index=members)}
    centrality = pd.Series({'A': 2, 'B': 1, 'C': 0}, name='connectivity')
    names = pd.Series({'A': 'A(Bacilli, Bacillaceae)', 'B': 'B(Bacilli, Listeriaceae)'})

    hive = HubAnalyzer(logger, config).hive_table(
        vip, 'Nox', 'blue', significance, membership, centrality, names
    )

    table = hive['table']
    assert list(table.index) == members
    assert table.loc['A', 'GS.Nox'] == 0.8
    assert table.loc['B', 'module_member_cor'] == 0.7
    assert table.loc['A', 'connectivity'] == 2
    assert table.loc['A', 'names'] == 'A(Bacilli, Bacillaceae)'
    assert table.loc['C', 'names'] is None
    assert (table['module'] == 'blue').all()
    # GS > 0.5 and VIP > 0.5
    assert list(hive['filtered'].index) == ['A']


class TestExporter:
    def test_module_graph_edges(self, logger, config, tom):
        G = NetworkExporter(logger, config).module_graph(tom, ['A', 'B', 'C', 'D', 'E'], module='blue')

        assert G.number_of_nodes() == 5
        edges = {frozenset(e) for e in G.edges()}
        assert edges == {frozenset('AB'), frozenset('AC'), frozenset('BD')}
        assert G['A']['B']['weight'] == 0.8

    def test_cytoscape_tables_skip_isolated(self, logger, config, tom):
        exporter = NetworkExporter(logger, config)
        G = exporter.module_graph(tom, list(tom.index), module='blue')

        edges, nodes = exporter.cytoscape_tables(G)

        assert list(edges.columns) == ['fromNode', 'toNode', 'weight', 'direction', 'fromAltName', 'toAltName']
        assert len(edges) == 3
        assert 'E' not in set(nodes['nodeName'])

        exporter = NetworkExporter(logger, make_config(EXPORT_ISOLATED=True))
        _, nodes = exporter.cytoscape_tables(G)
        assert 'E' in set(nodes['nodeName'])

    def test_export_module_writes_files(self, logger, config, tom, tmp_path):
        alt = pd.Series({'A': 'Firmicutes_Bacillaceae'})

        NetworkExporter(logger, config).export_module(tom, list(tom.index), 'blue', tmp_path, alt)

        edges = pd.read_csv(tmp_path / "CytoscapeInput_edges_blue.txt", sep='\t')
        assert len(edges) == 3
        assert 'Firmicutes_Bacillaceae' in set(edges['fromAltName']) | set(edges['toAltName'])

        visant = (tmp_path / "VisANTInput_blue.txt").read_text().strip().splitlines()
        assert len(visant) == 3
        assert all(line.split('\t')[3] == 'M1002' for line in visant)

        G = nx.read_graphml(tmp_path / "network_blue.graphml")
        assert G.number_of_edges() == 3

    def test_visant_keeps_taxa_with_shared_names_apart(self, logger, config, tom, tmp_path):
        alt = pd.Series('Bacteroidota_Flavobacteriaceae', index=tom.index)

        NetworkExporter(logger, config).export_module(tom, list(tom.index), 'blue', tmp_path, alt)

        visant = pd.read_csv(tmp_path / "VisANTInput_blue.txt", sep='\t', header=None)
        assert len(visant) == 3
        assert set(visant[0]) | set(visant[1]) == {'A', 'B', 'C', 'D'}
        assert (visant[0] != visant[1]).all()
        assert (visant[5] == 'Bacteroidota_Flavobacteriaceae').all()
