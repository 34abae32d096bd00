"""Hub taxa by node centrality and the combined VIP/centrality (hive) table."""

import pandas as pd
import numpy as np

from otu_network.modules import UNASSIGNED


class HubAnalyzer:
    """Ranks module taxa by their strong topological-overlap connections."""

    def __init__(self, logger, config):
        self.logger = logger
        self.config = config

    def node_centrality(self, tom: pd.DataFrame, members, threshold: float = None) -> pd.Series:
        """Count, per member, the other members whose overlap strictly exceeds threshold.

        Args:
            tom: Taxa x taxa topological overlap
            members: Taxa of one module
            threshold: Overlap threshold (default config['OVERLAP_THRESHOLD'])

        Returns:
            pd.Series: Connectivity count per member
        """
        if threshold is None:
            threshold = self.config['OVERLAP_THRESHOLD']

        members = list(members)
        sub = tom.loc[members, members].values.copy()
        np.fill_diagonal(sub, -np.inf)

        counts = (sub > threshold).sum(axis=1)
        return pd.Series(counts, index=pd.Index(members, name='OTU'), name='connectivity')

    def module_centrality(self, tom: pd.DataFrame, modules: pd.Series) -> pd.DataFrame:
        """Node centrality of every assigned taxon within its own module."""
        threshold = self.config['OVERLAP_THRESHOLD']
        self.logger.info(f"  Computing node centrality (TOM > {threshold})")

        frames = []
        for label in modules[modules != UNASSIGNED].unique():
            members = modules.index[modules == label]
            centrality = self.node_centrality(tom, members, threshold)
            frames.append(pd.DataFrame({
                'OTU': centrality.index,
                'module': label,
                'connectivity': centrality.values
            }))

        if len(frames) == 0:
            return pd.DataFrame(columns=['OTU', 'module', 'connectivity'])

        centrality_df = pd.concat(frames, ignore_index=True)
        return centrality_df.sort_values(
            ['module', 'connectivity'], ascending=[True, False], kind='mergesort'
        ).reset_index(drop=True)

    def get_top_hubs_per_module(self, centrality_df: pd.DataFrame, top_n: int = 5) -> pd.DataFrame:
        """Top N taxa by node centrality in each module."""
        top_hubs = []
        for label in centrality_df['module'].unique():
            module_hubs = centrality_df[centrality_df['module'] == label]
            top_hubs.append(module_hubs.nlargest(top_n, 'connectivity'))

        if len(top_hubs) > 0:
            return pd.concat(top_hubs, ignore_index=True)
        else:
            return pd.DataFrame()

    def hive_table(self, vip: pd.DataFrame, variable: str, module: str,
                   significance: dict, membership: dict, centrality: pd.Series,
                   names: pd.Series = None) -> dict:
        """Join VIP, taxon significance, membership and centrality for one model.

        Args:
            vip: VIP ranking (index OTU, columns VIP and rank)
            variable: Environmental variable that was modeled
            module: Module whose members were predictors
            significance: Taxon significance result (cor/pvalue tables)
            membership: Module membership result (cor/pvalue tables)
            centrality: Node centrality of the module members
            names: Optional display names per taxon

        Returns:
            dict: 'table' with all predictors and 'filtered' with those above
            HIVE_MIN_GS and HIVE_MIN_VIP
        """
        gs_column = f'GS.{variable}'
        table = vip.copy()
        table[gs_column] = significance['cor'].loc[table.index, variable]
        table[f'p.GS.{variable}'] = significance['pvalue'].loc[table.index, variable]
        table['module_member_cor'] = membership['cor'].loc[table.index, module]
        table['connectivity'] = centrality.reindex(table.index).fillna(0).astype(int)
        table['module'] = module

        top_n = self.config.get('HIVE_TOP_N', 10)
        top = table.nlargest(top_n, 'VIP').index
        if names is not None:
            table['names'] = [names.get(otu, otu) if otu in top else None for otu in table.index]
        else:
            table['names'] = [otu if otu in top else None for otu in table.index]

        filtered = table[
            (table[gs_column] > self.config.get('HIVE_MIN_GS', 0.5))
            & (table['VIP'] > self.config.get('HIVE_MIN_VIP', 0.5))
        ]

        self.logger.info(
            f"    Hive table: {len(table)} taxa, {len(filtered)} pass "
            f"GS > {self.config.get('HIVE_MIN_GS', 0.5)} and VIP > {self.config.get('HIVE_MIN_VIP', 0.5)}"
        )
        return {'table': table, 'filtered': filtered}
