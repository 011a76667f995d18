"""
Unit tests for CLI commands.
"""

import json

from empar.cli.main import app


def parse_json(output: str) -> dict:
    """JSON report from CLI output that may also carry warnings."""
    return json.loads(output[output.index("{"):output.rindex("}") + 1])


class TestCLIHelp:
    """Test help messages and basic CLI functionality."""

    def test_main_help(self, cli_runner):
        result = cli_runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "fit" in result.stdout
        assert "check-tree" in result.stdout
        assert "simulate" in result.stdout

    def test_fit_help(self, cli_runner):
        result = cli_runner.invoke(app, ["fit", "--help"])
        assert result.exit_code == 0
        assert "--tree" in result.stdout
        assert "--alignment" in result.stdout

    def test_models(self, cli_runner):
        result = cli_runner.invoke(app, ["models"])
        assert result.exit_code == 0
        assert result.stdout.split() == ["GMM", "JC69", "K80", "K81", "SSM"]


class TestCheckTree:
    """Test the check-tree command."""

    def test_rooted_tree(self, cli_runner, rooted_tree_file):
        result = cli_runner.invoke(app, ["check-tree", "-t", str(rooted_tree_file)])
        assert result.exit_code == 0
        assert "leaf 0: A" in result.stdout
        assert "Non-identifiable nodes: 4" in result.stdout

    def test_identifiable_tree(self, cli_runner, quartet_tree_file):
        result = cli_runner.invoke(app, ["check-tree", "-t", str(quartet_tree_file)])
        assert result.exit_code == 0
        assert "All parameters are identifiable." in result.stdout

    def test_model_option(self, cli_runner, rooted_tree_file):
        result = cli_runner.invoke(app, ["check-tree", "-t", str(rooted_tree_file), "-m", "K81"])
        assert result.exit_code == 0
        assert "Non-identifiable nodes: 4" in result.stdout

    def test_unknown_model(self, cli_runner, rooted_tree_file):
        result = cli_runner.invoke(app, ["check-tree", "-t", str(rooted_tree_file), "-m", "nope"])
        assert result.exit_code == 1

    def test_malformed_tree(self, cli_runner, tmp_path):
        tree_file = tmp_path / "bad.nwk"
        tree_file.write_text("(A,B,C)\n")
        result = cli_runner.invoke(app, ["check-tree", "-t", str(tree_file)])
        assert result.exit_code == 1


class TestFitCommand:
    """Test the fit command."""

    def test_fit_alignment(self, cli_runner, quartet_tree_file, quartet_alignment_file):
        result = cli_runner.invoke(app, [
            "fit",
            "-t", str(quartet_tree_file),
            "-m", "JC69",
            "-s", str(quartet_alignment_file),
        ])
        assert result.exit_code == 0
        assert "MODEL: JC69" in result.stdout
        assert quartet_alignment_file.with_suffix(".dat").exists()
        assert quartet_alignment_file.with_suffix(".cov").exists()

    def test_fit_output_prefix(self, cli_runner, tmp_path, quartet_tree_file, quartet_alignment_file):
        prefix = tmp_path / "estimate"
        result = cli_runner.invoke(app, [
            "fit",
            "-t", str(quartet_tree_file),
            "-m", "JC69",
            "-s", str(quartet_alignment_file),
            "-p", str(prefix),
            "-q",
        ])
        assert result.exit_code == 0
        assert (tmp_path / "estimate.dat").exists()
        assert not quartet_alignment_file.with_suffix(".dat").exists()

    def test_fit_warm_start(self, cli_runner, tmp_path, quartet_tree_file, quartet_alignment_file):
        args = ["fit", "-t", str(quartet_tree_file), "-m", "JC69", "-s", str(quartet_alignment_file), "-q"]
        assert cli_runner.invoke(app, args).exit_code == 0

        dat = quartet_alignment_file.with_suffix(".dat")
        result = cli_runner.invoke(app, args + ["--start", str(dat), "-p", str(tmp_path / "warm")])
        assert result.exit_code == 0
        assert (tmp_path / "warm.dat").exists()

    def test_fit_simulated_json(self, cli_runner, quartet_tree_file):
        result = cli_runner.invoke(app, [
            "fit",
            "-t", str(quartet_tree_file),
            "-m", "K81",
            "--simulate", "500",
            "--seed", "3",
            "--format", "json",
        ])
        assert result.exit_code == 0
        data = parse_json(result.stdout)
        assert data['model_name'] == "K81"
        assert data['identifiable'] is True
        assert len(data['branch_lengths']) == 5
        assert data['l2_distance'] >= 0

    def test_fit_report_file(self, cli_runner, tmp_path, quartet_tree_file):
        report = tmp_path / "report.json"
        result = cli_runner.invoke(app, [
            "fit",
            "-t", str(quartet_tree_file),
            "-m", "JC69",
            "--simulate", "300",
            "--seed", "1",
            "--format", "json",
            "-o", str(report),
        ])
        assert result.exit_code == 0
        assert json.loads(report.read_text())['model_name'] == "JC69"

    def test_unknown_model(self, cli_runner, quartet_tree_file):
        result = cli_runner.invoke(app, [
            "fit", "-t", str(quartet_tree_file), "-m", "HKY85", "--simulate", "100",
        ])
        assert result.exit_code == 1
        assert "Unknown model" in result.output

    def test_alignment_and_simulate_exclusive(self, cli_runner, quartet_tree_file, quartet_alignment_file):
        result = cli_runner.invoke(app, [
            "fit",
            "-t", str(quartet_tree_file),
            "-m", "JC69",
            "-s", str(quartet_alignment_file),
            "--simulate", "100",
        ])
        assert result.exit_code == 1
        assert "mutually exclusive" in result.output

    def test_missing_tree_file(self, cli_runner, tmp_path):
        result = cli_runner.invoke(app, [
            "fit", "-t", str(tmp_path / "nope.nwk"), "-m", "JC69",
        ])
        assert result.exit_code != 0


class TestSimulateCommand:
    """Test the simulate markov command."""

    def test_simulate_markov(self, cli_runner, tmp_path, quartet_tree_file):
        output = tmp_path / "sim.fasta"
        result = cli_runner.invoke(app, [
            "simulate", "markov",
            "-t", str(quartet_tree_file),
            "-m", "K80",
            "-o", str(output),
            "-l", "200",
            "--seed", "42",
        ])
        assert result.exit_code == 0
        assert output.exists()
        assert output.read_text().count(">") == 4

        params = json.loads((tmp_path / "sim.params.json").read_text())
        assert params['model'] == "K80"
        assert params['sequence_length'] == 200

    def test_simulate_no_params(self, cli_runner, tmp_path, quartet_tree_file):
        output = tmp_path / "sim.fasta"
        result = cli_runner.invoke(app, [
            "simulate", "markov",
            "-t", str(quartet_tree_file),
            "-m", "JC69",
            "-o", str(output),
            "-l", "50",
            "--no-output-params",
            "-q",
        ])
        assert result.exit_code == 0
        assert not (tmp_path / "sim.params.json").exists()

    def test_simulate_unknown_model(self, cli_runner, tmp_path, quartet_tree_file):
        result = cli_runner.invoke(app, [
            "simulate", "markov",
            "-t", str(quartet_tree_file),
            "-m", "nope",
            "-o", str(tmp_path / "sim.fasta"),
            "-l", "50",
        ])
        assert result.exit_code == 1
