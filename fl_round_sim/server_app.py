"""fl_round_sim: Federated-learning round simulator served as a Flower ServerApp.

Supports:
- FedAvg, FedProx, FedAdam and SCAFFOLD aggregation
- Dirichlet non-IID partitioning with size skew
- Client- or server-level differential privacy
- Clustered training with static or dynamic reclustering
"""

from datetime import datetime

import mlflow

from flwr.app import Context
from flwr.common import NDArrays
from flwr.serverapp import Grid, ServerApp

from fl_round_sim.config import SimulationConfig
from fl_round_sim.factory import create_model_for_config
from fl_round_sim.metrics import MlflowReporter, RoundMetrics, format_bytes
from fl_round_sim.simulation import run_simulation

# Create ServerApp
app = ServerApp()


def generate_experiment_name(config: SimulationConfig) -> str:
    """Generate dynamic MLflow experiment name from configuration."""
    clustering = config.clustering_mode if config.clustering_enabled else "none"
    return f"fl-sim-{config.dataset}-{config.algorithm}-clustering_{clustering}"


def generate_run_name(config: SimulationConfig) -> str:
    """Generate dynamic MLflow run name from configuration."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    k = config.num_clusters if config.clustering_enabled else 1
    return (
        f"{config.algorithm}_{config.dataset}_n{config.num_clients}_"
        f"a{config.iid_alpha}_k{k}_r{config.num_server_rounds}_{timestamp}"
    )


def print_banner(config: SimulationConfig) -> None:
    print("\n" + "=" * 60)
    print("Federated Learning Round Simulator")
    print("=" * 60)
    print(f"Dataset: {config.dataset} ({config.num_samples} samples)")
    print(f"Model: {config.model}")
    print(f"Algorithm: {config.algorithm}")
    print(f"Clients: {config.num_clients} (fraction {config.client_fraction})")
    print(f"Non-IID alpha: {config.iid_alpha}, balance: {config.balance}")
    if config.dp_clip_norm > 0:
        level = "client" if config.dp_client_level else "server"
        print(f"DP: clip {config.dp_clip_norm}, noise x{config.dp_noise_mult} ({level})")
    if config.clustering_enabled:
        print(f"Clustering mode: {config.clustering_mode}")
        print(f"Number of clusters: {config.num_clusters}")
        print(f"Recluster every: {config.recluster_every} rounds")
    print("=" * 60 + "\n")


@app.main()
def main(grid: Grid, context: Context) -> None:
    """Main entry point for the ServerApp."""
    config = SimulationConfig.from_run_config(context.run_config)

    mlflow_experiment = config.mlflow_experiment_name or generate_experiment_name(config)
    mlflow_run_name = config.mlflow_run_name or generate_run_name(config)
    mlflow.set_experiment(mlflow_experiment)

    print_banner(config)
    model, dataset = create_model_for_config(
        config.model,
        config.dataset,
        num_samples=config.num_samples,
        seed=config.seed,
        test_fraction=config.test_fraction,
    )

    reporter = MlflowReporter()

    def on_round_end(metrics: RoundMetrics, weights: NDArrays) -> None:
        line = (
            f"Round {metrics.round}: {metrics.participating}/{metrics.selected} clients, "
            f"acc={metrics.global_accuracy:.4f}, loss={metrics.global_loss:.4f}, "
            f"comm={format_bytes(metrics.comm_bytes)}"
        )
        if metrics.reclustered:
            sizes = ", ".join(f"{c}:{n}" for c, n in metrics.cluster_sizes.items())
            line += f" [reclustered {sizes}]"
        print(line)
        reporter(metrics, weights)

    def on_client_histograms(histograms) -> None:
        sizes = [int(h.sum()) for h in histograms]
        if sizes:
            print(f"Partitioned {sum(sizes)} examples, {min(sizes)}-{max(sizes)} per client")

    with mlflow.start_run(run_name=mlflow_run_name):
        mlflow.log_params(config.to_params())

        print(f"Starting {config.algorithm} for {config.num_server_rounds} rounds...")
        simulation = run_simulation(
            config,
            dataset=dataset,
            model=model,
            on_round_end=on_round_end,
            on_client_histograms=on_client_histograms,
        )

        summary = simulation.history.summary()
        if summary:
            mlflow.log_metrics(summary)

        # Save final model
        print("\nSaving final model...")
        model.set_weights(simulation.global_weights)
        model_filename = f"{config.model}_{config.dataset}_{config.algorithm}_model.pkl"
        model.save(model_filename)
        mlflow.log_artifact(model_filename)
        print(f"Model saved to {model_filename}")
