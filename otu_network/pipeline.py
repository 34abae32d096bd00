"""End-to-end weighted co-occurrence network analysis of an OTU table."""

import time
import traceback
from pathlib import Path
from typing import Optional

import pandas as pd

from otu_network.logger import setup_logger
from otu_network.exceptions import (
    ConfigurationError, ModuleDetectionError, NetworkAnalysisError, PowerSelectionError
)
from otu_network.data_handler import DatasetHandler
from otu_network.filtering import DataFilter
from otu_network.transformations import DataTransformer
from otu_network.networks import SoftThresholdSelector, NetworkBuilder
from otu_network.modules import ModuleDetector, UNASSIGNED
from otu_network.associations import TraitCorrelator
from otu_network.pls import PLSModeler, OK
from otu_network.analysis import HubAnalyzer
from otu_network.exporters import NetworkExporter


class NetworkAnalysisPipeline:
    """Runs quality control, network construction, module detection, trait
    association and PLS/VIP modeling in order, passing results in memory."""

    def __init__(self, config, output_dir, log_dir, logger=None):
        self.config = config
        self.output_dir = Path(output_dir)
        self.log_dir = Path(log_dir)

        self.logger = logger if logger is not None else setup_logger(self.log_dir)

        self.filter = DataFilter(self.logger, config)
        self.transformer = DataTransformer(self.logger, config)
        self.power_selector = SoftThresholdSelector(self.logger, config)
        self.networker = NetworkBuilder(self.logger, config)
        self.module_detector = ModuleDetector(self.logger, config)
        self.correlator = TraitCorrelator(self.logger, config)
        self.modeler = PLSModeler(self.logger, config)
        self.hub_analyzer = HubAnalyzer(self.logger, config)
        self.exporter = NetworkExporter(self.logger, config)

    def preprocess(self, handler: DatasetHandler) -> dict:
        """Transform, quality-check and cluster samples.

        Returns:
            dict: quality check result and sample tree diagnostics
        """
        self.logger.phase_start("Phase 1: Preprocessing & Diagnostics")

        handler.abundance = self.transformer.transform(handler.abundance)

        quality = self.filter.check(handler.abundance)
        if not quality['all_ok']:
            handler.drop(quality['bad_samples'], quality['bad_taxa'])
            self.logger.info(
                f"    Removed {len(quality['bad_samples'])} samples and "
                f"{len(quality['bad_taxa'])} taxa; {handler.abundance.shape} remain"
            )

        if handler.abundance.shape[1] < 2 or handler.abundance.shape[0] < 3:
            raise NetworkAnalysisError(
                f"Too little data after quality control: {handler.abundance.shape}"
            )

        sample_tree = self.filter.cluster_samples(handler.abundance, handler.environment)
        return {'quality': quality, 'sample_tree': sample_tree}

    def select_power(self, abundance: pd.DataFrame) -> dict:
        """Pick the soft-threshold power.

        Raises:
            PowerSelectionError: If no power qualifies and POWER_OVERRIDE is unset
        """
        self.logger.phase_start("Phase 2: Soft-threshold Selection")

        fit_table, estimate = self.power_selector.pick_soft_threshold(abundance)
        override = self.config.get('POWER_OVERRIDE')

        if override is not None:
            power = int(override)
            if estimate is None:
                self.logger.warning(
                    f"  Proceeding with POWER_OVERRIDE={power} although no power reached "
                    f"signed R^2 > {self.config['SFT_R2_CUT']}"
                )
            else:
                self.logger.info(f"  Using POWER_OVERRIDE={power} (estimate was {estimate})")
        elif estimate is None:
            best = fit_table['signed_r2'].idxmax() if fit_table['signed_r2'].notna().any() else None
            raise PowerSelectionError(
                self.config['SFT_R2_CUT'],
                best,
                fit_table.loc[best, 'signed_r2'] if best is not None else None
            )
        else:
            power = estimate

        return {'fit_table': fit_table, 'power_estimate': estimate, 'power': power}

    def build_network(self, abundance: pd.DataFrame, power: int) -> dict:
        self.logger.phase_start("Phase 3: Network Construction")
        adjacency = self.networker.adjacency(abundance, power)
        tom = self.networker.topological_overlap(adjacency)
        return {
            'adjacency': adjacency,
            'tom': tom,
            'connectivity': self.networker.connectivity(adjacency)
        }

    def detect_modules(self, abundance: pd.DataFrame, network: dict) -> dict:
        """Module assignment, eigengenes and module statistics.

        Raises:
            ModuleDetectionError: If every taxon is unassigned
        """
        self.logger.phase_start("Phase 4: Module Detection")

        dissimilarity = self.networker.tom_dissimilarity(network['tom'])
        modules, tree = self.module_detector.detect_modules(dissimilarity)

        merge_cut = self.config.get('MERGE_CUT_HEIGHT')
        if merge_cut is not None:
            modules = self.module_detector.merge_close_modules(abundance, modules, merge_cut)

        if (modules != UNASSIGNED).sum() == 0:
            raise ModuleDetectionError(
                f"No module with at least {self.config['MIN_MODULE_SIZE']} taxa was found"
            )

        eigengenes, var_explained = self.module_detector.module_eigengenes(abundance, modules)
        stats = self.module_detector.module_stats(
            modules, network['adjacency'], network['tom'], var_explained
        )
        connectivity = self.module_detector.intramodular_connectivity(network['adjacency'], modules)

        return {
            'modules': modules,
            'tree': tree,
            'eigengenes': eigengenes,
            'module_stats': stats,
            'intramodular_connectivity': connectivity
        }

    def associate(self, abundance: pd.DataFrame, eigengenes: pd.DataFrame,
                  environment: pd.DataFrame) -> dict:
        self.logger.phase_start("Phase 5: Trait Association")
        return {
            'module_trait': self.correlator.module_trait(eigengenes, environment),
            'significance': self.correlator.taxon_significance(abundance, environment),
            'membership': self.correlator.module_membership(abundance, eigengenes)
        }

    def select_pairs(self, module_trait: dict) -> list:
        """(module, variable) pairs to model.

        Explicit PLS_PAIRS win. Otherwise configured MODULES and ENV_VARIABLES
        restrict the candidates and, unless both are given, only pairs with a
        module-trait p-value below PAIR_P_THRESHOLD are kept.
        """
        pvalues = module_trait['pvalue']
        known_modules = list(pvalues.index)
        known_variables = list(pvalues.columns)

        pairs = self.config.get('PLS_PAIRS') or []
        if pairs:
            candidates = [tuple(pair) for pair in pairs]
            explicit = True
        else:
            modules = self.config.get('MODULES') or known_modules
            variables = self.config.get('ENV_VARIABLES') or known_variables
            candidates = [(m, v) for v in variables for m in modules]
            explicit = bool(self.config.get('MODULES')) and bool(self.config.get('ENV_VARIABLES'))

        for module, variable in candidates:
            if module not in known_modules:
                raise ConfigurationError(f"Unknown module {module!r}; detected {known_modules}")
            if variable not in known_variables:
                raise ConfigurationError(
                    f"Unknown environmental variable {variable!r}; available {known_variables}"
                )

        if not explicit:
            threshold = self.config.get('PAIR_P_THRESHOLD', 0.05)
            candidates = [(m, v) for m, v in candidates if pvalues.loc[m, v] < threshold]
            self.logger.info(
                f"  {len(candidates)} module-variable pairs with p < {threshold}"
            )

        return candidates

    def model_pairs(self, handler: DatasetHandler, modules_result: dict, network: dict,
                    traits: dict) -> dict:
        """Fit PLS/VIP for every selected pair and assemble hive tables."""
        self.logger.phase_start("Phase 6: PLS / VIP Modeling")

        modules = modules_result['modules']
        pairs = self.select_pairs(traits['module_trait'])
        names = handler.taxon_names(handler.abundance.columns)

        results = {}
        for module, variable in pairs:
            members = modules.index[modules == module]
            self.logger.info(f"  {module} ~ {variable}: {len(members)} taxa")

            result = self.modeler.fit(handler.abundance[members], handler.environment[variable])
            result['centrality'] = self.hub_analyzer.node_centrality(network['tom'], members)

            if result['status'] == OK:
                result['hive'] = self.hub_analyzer.hive_table(
                    result['vip'], variable, module,
                    traits['significance'], traits['membership'],
                    result['centrality'], names
                )
            else:
                result['hive'] = None

            results[(module, variable)] = result

        return results

    def run_analysis(self, abundance: pd.DataFrame, metadata: pd.DataFrame,
                     taxonomy: Optional[pd.DataFrame] = None) -> dict:
        """Run every stage on in-memory tables.

        Args:
            abundance: Samples x taxa matrix
            metadata: Samples x metadata columns (numeric complete columns are
                used as environmental variables)
            taxonomy: Optional taxa x ranks lookup used to annotate reports

        Returns:
            dict: Results of every stage
        """
        handler = DatasetHandler(self.logger, self.config)
        handler.set_data(abundance, metadata, taxonomy)
        return self.analyze(handler)

    def analyze(self, handler: DatasetHandler) -> dict:
        start_time = time.time()

        results = {'handler': handler}
        results.update(self.preprocess(handler))
        results['power'] = self.select_power(handler.abundance)
        results['network'] = self.build_network(handler.abundance, results['power']['power'])
        results['modules'] = self.detect_modules(handler.abundance, results['network'])
        results['traits'] = self.associate(
            handler.abundance, results['modules']['eigengenes'], handler.environment
        )
        results['centrality'] = self.hub_analyzer.module_centrality(
            results['network']['tom'], results['modules']['modules']
        )
        results['pls'] = self.model_pairs(
            handler, results['modules'], results['network'], results['traits']
        )
        results['execution_time'] = time.time() - start_time

        modules = results['modules']['modules']
        self.logger.metric("Analysis", {
            'n_samples': int(handler.abundance.shape[0]),
            'n_taxa': int(handler.abundance.shape[1]),
            'power': int(results['power']['power']),
            'n_modules': int(results['modules']['eigengenes'].shape[1]),
            'n_unassigned': int((modules == UNASSIGNED).sum()),
            'n_pairs': len(results['pls']),
            'n_models': sum(1 for r in results['pls'].values() if r['status'] == OK)
        })
        self.logger.pipeline_summary(results['pls'], results['execution_time'])
        return results

    def run(self, abundance_file, metadata_file, taxonomy_file=None) -> dict:
        """Load input files, run the analysis and save every table.

        Failures are logged and reported in the returned dict instead of raised.
        """
        self.logger.section("OTU CO-OCCURRENCE NETWORK ANALYSIS", level=1)
        self.logger.info(f"Output directory: {self.output_dir}")

        summary = {'success': False}
        try:
            self.logger.phase_start("Phase 0: Load Data")
            handler = DatasetHandler(self.logger, self.config)
            if not handler.load(abundance_file, metadata_file, taxonomy_file):
                summary['error'] = "Failed to load data"
                return summary

            results = self.analyze(handler)
            self.save_results(results, self.output_dir)

            summary.update({
                'success': True,
                'power': results['power']['power'],
                'n_modules': len(results['modules']['eigengenes'].columns),
                'n_models': sum(1 for r in results['pls'].values() if r['status'] == OK),
                'results': results
            })
        except NetworkAnalysisError as e:
            self.logger.error(f"Analysis stopped: {e}")
            self.logger.debug(traceback.format_exc())
            summary['error'] = str(e)

        return summary

    def save_results(self, results: dict, output_dir: Path):
        """Write all result tables as CSV."""
        self.logger.phase_start("Phase 7: Save Results")
        output_dir = Path(output_dir)
        output_dir.mkdir(exist_ok=True, parents=True)

        handler = results['handler']
        quality = results['quality']

        pd.DataFrame(
            [{'type': 'sample', 'id': s} for s in quality['bad_samples']]
            + [{'type': 'taxon', 'id': t} for t in quality['bad_taxa']],
            columns=['type', 'id']
        ).to_csv(output_dir / "removed_samples_taxa.csv", index=False)

        tree = results['sample_tree']
        order_df = pd.DataFrame({'sample': tree['order']})
        if tree['trait_levels'] is not None:
            order_df = order_df.join(tree['trait_levels'].reset_index(drop=True))
        order_df.to_csv(output_dir / "sample_tree_order.csv", index=False)

        results['power']['fit_table'].to_csv(output_dir / "soft_threshold_fit.csv")

        modules = results['modules']
        assignment = modules['modules'].rename_axis('OTU').to_frame()
        if handler.taxonomy is not None:
            assignment = assignment.join(handler.taxonomy, how='left')
        assignment.to_csv(output_dir / "module_composition.csv")
        modules['module_stats'].to_csv(output_dir / "module_stats.csv", index=False)
        modules['intramodular_connectivity'].rename_axis('OTU').to_csv(
            output_dir / "intramodular_connectivity.csv"
        )
        modules['eigengenes'].rename_axis('sample').to_csv(output_dir / "module_eigengenes.csv")

        traits = results['traits']
        for name in ('module_trait', 'significance', 'membership'):
            for key in ('cor', 'pvalue', 'padj'):
                if key in traits[name]:
                    traits[name][key].to_csv(output_dir / f"{name}_{key}.csv")

        for variable in handler.environment.columns:
            report = self.correlator.taxon_report(
                variable, traits['significance'], traits['membership'],
                modules['modules'], handler.taxonomy
            )
            report.to_csv(output_dir / f"corr_{variable}.csv", index=False)

        results['centrality'].to_csv(output_dir / "node_centrality.csv", index=False)
        top_hubs = self.hub_analyzer.get_top_hubs_per_module(results['centrality'])
        if len(top_hubs) > 0:
            top_hubs.to_csv(output_dir / "top_hubs.csv", index=False)

        self._save_pls_results(results, output_dir)
        self.logger.info(f"  Saved results to {output_dir}")

    def _save_pls_results(self, results: dict, output_dir: Path):
        handler = results['handler']
        pls_dir = output_dir / "pls"
        summary_rows = []
        exported = set()

        for (module, variable), result in results['pls'].items():
            pair_dir = pls_dir / f"{variable}_{module}"
            pair_dir.mkdir(exist_ok=True, parents=True)

            result['r2_cv'].to_csv(pair_dir / "r2_cv.csv")
            result['centrality'].to_csv(pair_dir / "node_centrality.csv")

            if result['status'] == OK:
                result['vip'].to_csv(pair_dir / "vip_scores.csv")
                result['predictions'].rename_axis('sample').to_csv(pair_dir / "predictions.csv")
                result['hive']['table'].to_csv(pair_dir / "hive_table.csv")
                result['hive']['filtered'].to_csv(pair_dir / "hive_filtered.csv")

            summary_rows.append({
                'module': module,
                'variable': variable,
                'status': result['status'],
                'n_components': result['n_components'],
                'r2_cv': result['r2'],
                'max_r2_cv': result['r2_cv'].max() if len(result['r2_cv']) else None,
                'prediction_cor': result['prediction_cor'][0] if result['prediction_cor'] else None,
                'top_taxon': result['vip'].index[0] if result['status'] == OK else None
            })

            if self.config.get('EXPORT_NETWORKS', True) and module not in exported:
                members = results['modules']['modules']
                members = members.index[members == module]
                self.exporter.export_module(
                    results['network']['tom'], members, module,
                    output_dir / "networks", self._alt_names(handler, members)
                )
                exported.add(module)

        pd.DataFrame(
            summary_rows,
            columns=['module', 'variable', 'status', 'n_components', 'r2_cv',
                     'max_r2_cv', 'prediction_cor', 'top_taxon']
        ).to_csv(output_dir / "pls_summary.csv", index=False)

    @staticmethod
    def _alt_names(handler: DatasetHandler, members) -> Optional[pd.Series]:
        """Phylum_Family names for exported nodes when taxonomy is available."""
        taxonomy = handler.taxonomy
        if taxonomy is None or not {'Phylum', 'Family'} <= set(taxonomy.columns):
            return None
        known = [m for m in members if m in taxonomy.index]
        sub = taxonomy.loc[known, ['Phylum', 'Family']].astype(str)
        return sub['Phylum'] + '_' + sub['Family']
